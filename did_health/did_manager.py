"""
DID Manager - DID Documents and the identity registry

DID Format: did:example:<role><name><suffix>

Reference: https://www.w3.org/TR/did-core/
"""

import json
import uuid
import logging
from typing import Optional, Dict, Any
from dataclasses import dataclass, field, replace
from enum import Enum

from .errors import DuplicateError, NotFound, ValidationError
from .key_manager import (
    KeyManager,
    KeyPair,
    IdentityMaterial,
    ED25519_KEY_TYPE,
    SECP256K1_KEY_TYPE,
)

logger = logging.getLogger(__name__)

DID_CONTEXT = "https://www.w3.org/ns/did/v1"

SUITE_CONTEXTS = {
    ED25519_KEY_TYPE: "https://w3id.org/security/suites/ed25519-2020/v1",
    SECP256K1_KEY_TYPE: "https://w3id.org/security/suites/secp256k1-2019/v1",
}


class Role(Enum):
    """Principal roles"""
    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"


@dataclass(frozen=True)
class ServiceEndpoint:
    """Service endpoint in DID Document"""
    id: str
    type: str
    service_endpoint: str
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "id": self.id,
            "type": self.type,
            "serviceEndpoint": self.service_endpoint
        }
        if self.description:
            result["description"] = self.description
        return result


@dataclass(frozen=True)
class DIDDocument:
    """
    W3C DID Document

    Reference: https://www.w3.org/TR/did-core/#core-properties
    """
    id: str
    verification_method: tuple = ()
    authentication: tuple = ()
    assertion_method: tuple = ()
    service: tuple = ()
    context: tuple = (DID_CONTEXT,)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to W3C DID Document JSON format"""
        return {
            "@context": list(self.context),
            "id": self.id,
            "verificationMethod": [dict(vm) for vm in self.verification_method],
            "authentication": list(self.authentication),
            "assertionMethod": list(self.assertion_method),
            "service": [dict(svc) for svc in self.service]
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def find_verification_method(self, method_id: str) -> Optional[Dict[str, Any]]:
        for vm in self.verification_method:
            if vm.get("id") == method_id:
                return dict(vm)
        return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DIDDocument":
        return cls(
            id=data["id"],
            verification_method=tuple(data.get("verificationMethod", [])),
            authentication=tuple(data.get("authentication", [])),
            assertion_method=tuple(data.get("assertionMethod", [])),
            service=tuple(data.get("service", [])),
            context=tuple(data.get("@context", [DID_CONTEXT]))
        )


# ==================== DOCUMENT BUILDER ====================

def build_did_document(identifier: str, key_pair: KeyPair) -> DIDDocument:
    """
    Build the DID Document for an identifier and its public key

    Pure and deterministic: the same inputs always give the same document.
    The one verification method is referenced by both authentication and
    assertionMethod.
    """
    if not identifier or not identifier.startswith("did:"):
        raise ValidationError(f"Not a DID: {identifier!r}")

    method = KeyPair(
        key_id=f"{identifier}#key-1",
        key_type=key_pair.key_type,
        public_key=key_pair.public_key,
        controller=identifier
    ).to_verification_method()

    context = (DID_CONTEXT,)
    if key_pair.key_type in SUITE_CONTEXTS:
        context += (SUITE_CONTEXTS[key_pair.key_type],)

    return DIDDocument(
        id=identifier,
        verification_method=(method,),
        authentication=(method["id"],),
        assertion_method=(method["id"],),
        context=context
    )


def add_service(document: DIDDocument, service: ServiceEndpoint) -> DIDDocument:
    """Return a copy of the document with one more service endpoint"""
    if any(svc.get("id") == service.id for svc in document.service):
        raise DuplicateError(f"Service already present: {service.id}")
    return replace(document, service=document.service + (service.to_dict(),))


# ==================== IDENTITY RECORDS ====================

@dataclass
class DIDIdentity:
    """Persisted identity: the DID, its document and key pair"""
    identifier: str
    method: str
    document: DIDDocument
    key_pair: KeyPair

    @property
    def public_key(self) -> str:
        return self.key_pair.public_key

    def public_profile(self) -> Dict[str, Any]:
        """Public view. Never contains private key material."""
        return {
            "didIdentifier": self.identifier,
            "didDocument": self.document.to_dict(),
            "method": self.method,
            "publicKey": self.key_pair.public_key
        }


def _camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part.title() for part in rest)


@dataclass
class Principal:
    """An authenticated portal user"""
    id: str
    role: Role
    did_identifier: str
    display_name: str
    email: str
    profile: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_doctor(self) -> bool:
        return self.role is Role.DOCTOR

    @property
    def is_patient(self) -> bool:
        return self.role is Role.PATIENT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "didIdentifier": self.did_identifier,
            "displayName": self.display_name,
            "email": self.email,
            **{_camel(k): v for k, v in self.profile.items()}
        }


@dataclass
class Registration:
    principal: Principal
    identity: DIDIdentity


class DIDManager:
    """
    Identity registry

    Features:
    - Register principals with a fresh DID
    - Resolve DIDs to DID Documents
    - Add service endpoints
    - Look up principals by id or DID
    """

    def __init__(
        self,
        key_manager: Optional[KeyManager] = None,
        service_endpoint: Optional[str] = None
    ):
        self.key_manager = key_manager or KeyManager()
        self.service_endpoint = service_endpoint
        self._identities: Dict[str, DIDIdentity] = {}
        self._principals: Dict[str, Principal] = {}
        self._did_to_principal: Dict[str, str] = {}
        self._emails: Dict[str, str] = {}

    # ==================== REGISTRATION ====================

    def register(
        self,
        display_name: str,
        email: str,
        role: str,
        **profile: Any
    ) -> Registration:
        """
        Register a principal and create its DID

        Args:
            display_name: Full name
            email: Contact email, unique per principal
            role: patient, doctor or admin
            profile: Role specific fields (doctors need specialty and license_number)

        Returns:
            Registration with the principal and its identity
        """
        if not display_name or not email or not role:
            raise ValidationError("Name, email, and role are required")

        try:
            principal_role = Role(role)
        except ValueError:
            raise ValidationError(f"Invalid role: {role}") from None

        if principal_role is Role.DOCTOR and not (profile.get("specialty") and profile.get("license_number")):
            raise ValidationError("Specialty and license number required for doctors")

        if email.lower() in self._emails:
            raise DuplicateError(f"Email already registered: {email}")

        material = self.key_manager.generate(principal_role.value, display_name)
        identity = self.create_identity(material)

        principal = Principal(
            id=str(uuid.uuid4()),
            role=principal_role,
            did_identifier=identity.identifier,
            display_name=display_name,
            email=email,
            profile={k: v for k, v in profile.items() if v is not None}
        )
        self._principals[principal.id] = principal
        self._did_to_principal[identity.identifier] = principal.id
        self._emails[email.lower()] = principal.id

        logger.info("Registered %s %s as %s", principal_role.value, principal.id, identity.identifier)
        return Registration(principal=principal, identity=identity)

    def create_identity(self, material: IdentityMaterial) -> DIDIdentity:
        """Persist identity material; the DID must not exist yet"""
        did = material.did_identifier
        if did in self._identities:
            raise DuplicateError(f"DID already exists: {did}")

        document = build_did_document(did, material.key_pair)
        if self.service_endpoint:
            document = add_service(document, ServiceEndpoint(
                id=f"{did}#healthcare-service",
                type="HealthcareService",
                service_endpoint=self.service_endpoint
            ))

        identity = DIDIdentity(
            identifier=did,
            method=did.split(":")[1],
            document=document,
            key_pair=material.key_pair
        )
        self._identities[did] = identity
        return identity

    # ==================== RESOLUTION ====================

    def resolve(self, did: str) -> Optional[DIDDocument]:
        """Resolve DID to DID Document, None if unknown"""
        identity = self._identities.get(did)
        return identity.document if identity else None

    def get_identity(self, did: str) -> DIDIdentity:
        identity = self._identities.get(did)
        if identity is None:
            raise NotFound(f"DID not found: {did}")
        return identity

    def get_principal(self, principal_id: str) -> Optional[Principal]:
        return self._principals.get(principal_id)

    def get_principal_by_did(self, did: str) -> Optional[Principal]:
        principal_id = self._did_to_principal.get(did)
        return self._principals.get(principal_id) if principal_id else None

    def get_key_pair(self, did: str) -> Optional[KeyPair]:
        """Signing key lookup for server-side signers (demo only)"""
        identity = self._identities.get(did)
        return identity.key_pair if identity else None

    # ==================== UPDATES ====================

    def add_service(self, did: str, service: ServiceEndpoint) -> DIDDocument:
        """Add service endpoint to a registered DID Document"""
        identity = self.get_identity(did)
        identity.document = add_service(identity.document, service)
        return identity.document

    # ==================== UTILITIES ====================

    def get_statistics(self) -> Dict[str, int]:
        by_role = {role.value: 0 for role in Role}
        for principal in self._principals.values():
            by_role[principal.role.value] += 1
        return {"total": len(self._identities), **by_role}
