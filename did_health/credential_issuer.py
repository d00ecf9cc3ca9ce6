"""
Verifiable Credentials Factory
==============================

Builds healthcare Verifiable Credentials (VC) following the
W3C Verifiable Credentials Data Model 1.1

Reference: https://www.w3.org/TR/vc-data-model/
"""

import re
import copy
import json
import uuid
import logging
from typing import Optional, Dict, Any, List, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum

from .errors import InvalidCredentialType, ValidationError
from .proofs import Signer, PlaceholderSigner, verification_method_for

logger = logging.getLogger(__name__)

VC_CONTEXT = "https://www.w3.org/2018/credentials/v1"
BASE_TYPE = "VerifiableCredential"

_DID_SHAPE = re.compile(r"^did:[a-z0-9]+:[A-Za-z0-9._:%-]+$")


class CredentialType(Enum):
    """Built-in healthcare credential types"""
    HEALTH_CHECKUP = "HealthCheckupCredential"
    BLOOD_TEST = "BloodTestCredential"
    VACCINATION = "VaccinationCredential"
    APPOINTMENT = "AppointmentCredential"
    PRESCRIPTION = "PrescriptionCredential"


# ==================== TIMESTAMPS ====================

def format_timestamp(value: datetime) -> str:
    """ISO 8601 in UTC with millisecond precision and a Z suffix"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 timestamp; naive values are taken as UTC"""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def add_years(value: datetime, years: int) -> datetime:
    try:
        return value.replace(year=value.year + years)
    except ValueError:
        # Feb 29 on a non-leap target year
        return value.replace(year=value.year + years, day=28)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ==================== SAMPLE DATA ====================

def _day(value: datetime) -> str:
    return value.date().isoformat()


def health_checkup_sample(patient_name: str, issued_at: datetime) -> Dict[str, Any]:
    return {
        "patientName": patient_name,
        "checkupDate": _day(issued_at),
        "bloodPressure": "120/80 mmHg",
        "heartRate": "72 bpm",
        "weight": "70 kg",
        "height": "175 cm",
        "summary": "Normal vital signs. Patient is in good health.",
        "recommendations": ["Continue regular exercise", "Maintain balanced diet"]
    }


def blood_test_sample(patient_name: str, issued_at: datetime) -> Dict[str, Any]:
    return {
        "patientName": patient_name,
        "testDate": _day(issued_at),
        "testType": "Complete Blood Count",
        "results": {
            "hemoglobin": "14.5 g/dL",
            "whiteBloodCells": "6800/μL",
            "platelets": "250,000/μL",
            "glucose": "95 mg/dL"
        },
        "status": "Normal",
        "labTechnician": "Lab Tech ID: LT-123"
    }


def vaccination_sample(patient_name: str, issued_at: datetime) -> Dict[str, Any]:
    return {
        "patientName": patient_name,
        "vaccineName": "COVID-19 mRNA Vaccine",
        "manufacturer": "Pfizer-BioNTech",
        "batchNumber": "ABC123",
        "vaccinationDate": _day(issued_at),
        "doseNumber": 1,
        "nextDueDate": _day(issued_at + timedelta(days=21)),
        "administeredBy": "Dr. Jane Smith",
        "location": "City Health Center"
    }


def appointment_sample(patient_name: str, issued_at: datetime) -> Dict[str, Any]:
    return {
        "patientName": patient_name,
        "appointmentDate": format_timestamp(issued_at + timedelta(days=7)),
        "appointmentType": "Follow-up Consultation",
        "duration": "30 minutes",
        "location": "Medical Center, Room 205",
        "purpose": "Review recent test results and discuss treatment plan",
        "instructions": "Please bring previous medical records"
    }


def prescription_sample(patient_name: str, issued_at: datetime) -> Dict[str, Any]:
    return {
        "patientName": patient_name,
        "prescriptionDate": _day(issued_at),
        "medication": "Amoxicillin",
        "dosage": "500 mg",
        "frequency": "Three times daily",
        "duration": "7 days",
        "refills": 0,
        "instructions": "Take with food. Complete the full course."
    }


# ==================== TYPE REGISTRY ====================

SampleGenerator = Callable[[str, datetime], Dict[str, Any]]


@dataclass(frozen=True)
class CredentialTypePolicy:
    """Defaults attached to a credential type"""
    name: str
    sample_data: Optional[SampleGenerator] = None
    validity_years: Optional[int] = None

    def expiration_for(self, issued_at: datetime) -> Optional[datetime]:
        if self.validity_years is None:
            return None
        return add_years(issued_at, self.validity_years)


class CredentialTypeRegistry:
    """
    Open set of credential types

    Built-in types ship with sample data; more types can be registered,
    with or without defaults.
    """

    def __init__(self):
        self._policies: Dict[str, CredentialTypePolicy] = {}

    def register(
        self,
        name: str,
        sample_data: Optional[SampleGenerator] = None,
        validity_years: Optional[int] = None
    ) -> CredentialTypePolicy:
        if not name or name == BASE_TYPE:
            raise ValueError(f"Invalid credential type name: {name!r}")
        policy = CredentialTypePolicy(name=name, sample_data=sample_data, validity_years=validity_years)
        self._policies[name] = policy
        return policy

    def get(self, name: str) -> CredentialTypePolicy:
        policy = self._policies.get(name)
        if policy is None:
            raise InvalidCredentialType(f"Invalid credential type: {name}")
        return policy

    def is_known(self, name: str) -> bool:
        return name in self._policies

    def names(self) -> List[str]:
        return list(self._policies)

    def sample(self, name: str, patient_name: str, issued_at: Optional[datetime] = None) -> Dict[str, Any]:
        """Default claims for a type; empty when the type has no generator"""
        policy = self.get(name)
        if policy.sample_data is None:
            return {}
        return policy.sample_data(patient_name, issued_at or utcnow())


def default_registry(vaccination_validity_years: int = 5) -> CredentialTypeRegistry:
    registry = CredentialTypeRegistry()
    registry.register(CredentialType.HEALTH_CHECKUP.value, health_checkup_sample)
    registry.register(CredentialType.BLOOD_TEST.value, blood_test_sample)
    registry.register(CredentialType.VACCINATION.value, vaccination_sample, vaccination_validity_years)
    registry.register(CredentialType.APPOINTMENT.value, appointment_sample)
    registry.register(CredentialType.PRESCRIPTION.value, prescription_sample)
    return registry


# ==================== CREDENTIAL ====================

def canonical_json(data: Dict[str, Any]) -> bytes:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def unsigned_payload(vc_dict: Dict[str, Any]) -> bytes:
    """Canonical bytes of a VC document without its proof"""
    return canonical_json({k: v for k, v in vc_dict.items() if k != "proof"})


@dataclass(frozen=True)
class VerifiableCredential:
    """
    W3C Verifiable Credential

    A credential containing claims about a subject, signed by an issuer.
    Instances are frozen; to_dict() always returns a fresh copy.
    """
    id: str
    type: tuple
    issuer: str
    issuance_date: str
    credential_subject: Dict[str, Any] = field(default_factory=dict)
    expiration_date: Optional[str] = None
    proof: Optional[Dict[str, Any]] = None
    context: tuple = (VC_CONTEXT,)

    @property
    def credential_type(self) -> str:
        return next((t for t in self.type if t != BASE_TYPE), "Unknown")

    @property
    def subject_did(self) -> str:
        return self.credential_subject.get("id", "")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to W3C VC JSON format"""
        vc = {
            "@context": list(self.context),
            "id": self.id,
            "type": list(self.type),
            "issuer": self.issuer,
            "issuanceDate": self.issuance_date,
            "credentialSubject": copy.deepcopy(self.credential_subject)
        }
        if self.expiration_date:
            vc["expirationDate"] = self.expiration_date
        if self.proof:
            vc["proof"] = dict(self.proof)
        return vc

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def canonical_payload(self) -> bytes:
        return unsigned_payload(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VerifiableCredential":
        return cls(
            context=tuple(data.get("@context", [])),
            id=data.get("id", ""),
            type=tuple(data.get("type", [])),
            issuer=data.get("issuer", ""),
            issuance_date=data.get("issuanceDate", ""),
            expiration_date=data.get("expirationDate"),
            credential_subject=copy.deepcopy(data.get("credentialSubject", {})),
            proof=data.get("proof")
        )


class CredentialFactory:
    """
    Builds signed Verifiable Credentials

    Pure construction: no persistence. Signing is delegated to the injected
    Signer, so the proof scheme can change without touching this class.
    """

    def __init__(
        self,
        signer: Optional[Signer] = None,
        registry: Optional[CredentialTypeRegistry] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.signer = signer or PlaceholderSigner()
        self.registry = registry or default_registry()
        self.clock = clock

    def issue(
        self,
        issuer_did: str,
        subject_did: str,
        credential_type: str,
        claims: Optional[Dict[str, Any]] = None,
        subject_name: str = "",
        issued_at: Optional[datetime] = None,
        expires_at: Optional[datetime] = None
    ) -> VerifiableCredential:
        """
        Issue a Verifiable Credential

        Args:
            issuer_did: DID of the issuing doctor
            subject_did: DID of the patient the claims are about
            credential_type: A registered credential type name
            claims: Claim data; empty or None falls back to the type's sample data
            subject_name: Patient name used by sample data
            issued_at: Override for issuanceDate (defaults to now)
            expires_at: Override for expirationDate (defaults to the type policy)

        Returns:
            Signed VerifiableCredential
        """
        for label, did in (("issuer", issuer_did), ("subject", subject_did)):
            if not isinstance(did, str) or not _DID_SHAPE.match(did):
                raise ValidationError(f"Invalid {label} DID: {did!r}")

        if claims is not None and not isinstance(claims, dict):
            raise ValidationError("Claims must be an object")

        policy = self.registry.get(credential_type)
        issued = issued_at or self.clock()

        if not claims:
            claims = self.registry.sample(credential_type, subject_name, issued)

        # subject id always wins over a claim named "id"
        credential_subject = {"id": subject_did}
        credential_subject.update({k: v for k, v in copy.deepcopy(claims).items() if k != "id"})

        expiration = expires_at or policy.expiration_for(issued)

        unsigned = VerifiableCredential(
            id=f"urn:uuid:{uuid.uuid4()}",
            type=(BASE_TYPE, credential_type),
            issuer=issuer_did,
            issuance_date=format_timestamp(issued),
            expiration_date=format_timestamp(expiration) if expiration else None,
            credential_subject=credential_subject
        )

        proof = {
            "type": self.signer.proof_type(issuer_did),
            "created": format_timestamp(issued),
            "verificationMethod": verification_method_for(issuer_did),
            "proofPurpose": "assertionMethod",
            "signatureValue": self.signer.sign(unsigned.canonical_payload(), issuer_did)
        }

        credential = VerifiableCredential(
            id=unsigned.id,
            type=unsigned.type,
            issuer=unsigned.issuer,
            issuance_date=unsigned.issuance_date,
            expiration_date=unsigned.expiration_date,
            credential_subject=unsigned.credential_subject,
            proof=proof
        )
        logger.debug("Built %s %s for %s", credential_type, credential.id, subject_did)
        return credential
