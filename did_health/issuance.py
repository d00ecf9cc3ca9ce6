"""
Issuance Service
================

Doctor-to-patient credential issuance with authorization, persistence and
subject notification.
"""

import logging
from typing import Optional, Dict, Any, List, Callable
from dataclasses import dataclass

from .errors import Forbidden, InvalidCredentialType, NotFound
from .did_manager import DIDManager, Principal, Role
from .credential_issuer import CredentialFactory
from .credential_store import CredentialStore, StoredCredential

logger = logging.getLogger(__name__)

# notify(user_id, title, message, kind, metadata)
Notifier = Callable[..., Any]


@dataclass
class IssuedCredential:
    """A persisted record together with the VC document handed to the holder"""
    record: StoredCredential
    vc_document: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": "Credential issued successfully",
            "credential": self.record.to_dict(),
            "vcData": self.vc_document
        }


def _short_type(credential_type: str) -> str:
    return credential_type.replace("Credential", "") or credential_type


class IssuanceService:
    """
    Issues, lists and revokes credentials on behalf of principals

    Only doctors issue, only to registered patients. Access to a stored
    credential is limited to its subject, its issuer and admins.
    """

    def __init__(
        self,
        did_manager: DIDManager,
        factory: CredentialFactory,
        store: CredentialStore,
        notifier: Optional[Notifier] = None,
        store_timeout: Optional[float] = None
    ):
        self.did_manager = did_manager
        self.factory = factory
        self.store = store
        self.notifier = notifier
        self.store_timeout = store_timeout

    # ==================== ISSUANCE ====================

    async def issue_to_patient(
        self,
        issuer: Principal,
        subject_did: str,
        credential_type: str,
        custom_claims: Optional[Dict[str, Any]] = None
    ) -> IssuedCredential:
        """
        Issue a credential from a doctor to a patient

        Raises:
            Forbidden: issuer is not a doctor
            InvalidCredentialType: type is not registered
            NotFound: subject DID does not belong to a patient
            DuplicateError, StoreUnavailable: from the store
        """
        if not issuer.is_doctor:
            raise Forbidden("Only doctors can issue credentials")

        if not self.factory.registry.is_known(credential_type):
            raise InvalidCredentialType(f"Invalid credential type: {credential_type}")

        patient = self.did_manager.get_principal_by_did(subject_did)
        if patient is None or not patient.is_patient:
            raise NotFound(f"Patient not found: {subject_did}")

        credential = self.factory.issue(
            issuer_did=issuer.did_identifier,
            subject_did=subject_did,
            credential_type=credential_type,
            claims=custom_claims,
            subject_name=patient.display_name
        )
        record = await self.store.save(credential, timeout=self.store_timeout)

        logger.info("Doctor %s issued %s %s to %s", issuer.id, credential_type, record.id, subject_did)

        self._notify(
            patient.id,
            "New Credential Issued",
            f"You have received a new {_short_type(credential_type)} credential",
            "success",
            {"credentialId": record.id, "credentialType": credential_type}
        )
        return IssuedCredential(record=record, vc_document=credential.to_dict())

    # ==================== ACCESS ====================

    async def credentials_for(self, principal: Principal) -> List[StoredCredential]:
        """Patients see credentials about them, doctors those they issued"""
        if principal.role is Role.PATIENT:
            return await self.store.find_by_subject(principal.did_identifier, timeout=self.store_timeout)
        if principal.role is Role.DOCTOR:
            return await self.store.find_by_issuer(principal.did_identifier, timeout=self.store_timeout)
        return []

    async def get_credential(self, credential_id: str, principal: Principal) -> StoredCredential:
        record = await self.store.find_by_id(credential_id, timeout=self.store_timeout)
        if principal.role is Role.ADMIN:
            return record
        if principal.did_identifier not in (record.subject_did, record.issuer_did):
            raise Forbidden("Not allowed to view this credential")
        return record

    async def revoke(self, credential_id: str, principal: Principal) -> StoredCredential:
        """Revoke as the issuing doctor. Repeated revokes return the same record."""
        record, changed = await self.store.revoke_with_outcome(
            credential_id, principal.did_identifier, timeout=self.store_timeout
        )

        if changed:
            subject = self.did_manager.get_principal_by_did(record.subject_did)
            if subject is not None:
                self._notify(
                    subject.id,
                    "Credential Revoked",
                    f"Your {_short_type(record.credential_type)} credential was revoked",
                    "warning",
                    {"credentialId": record.id, "credentialType": record.credential_type}
                )
        return record

    async def dashboard_stats(self, principal: Principal) -> Dict[str, Any]:
        if principal.role is Role.PATIENT:
            counts = await self.store.count_by_subject(principal.did_identifier, timeout=self.store_timeout)
            return {"totalCredentials": counts["total"], "activeCredentials": counts["active"]}
        if principal.role is Role.DOCTOR:
            counts = await self.store.count_by_issuer(principal.did_identifier, timeout=self.store_timeout)
            return {"credentialsIssued": counts["total"], "credentialsRevoked": counts["revoked"]}

        counts = await self.store.count(timeout=self.store_timeout)
        users = self.did_manager.get_statistics()
        return {
            "totalUsers": users["total"],
            "totalDoctors": users[Role.DOCTOR.value],
            "totalPatients": users[Role.PATIENT.value],
            "totalCredentials": counts["total"]
        }

    # ==================== HELPERS ====================

    def _notify(self, user_id: str, title: str, message: str, kind: str, metadata: Dict[str, Any]) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier(user_id, title, message, kind, metadata)
        except Exception:
            logger.warning("Failed to notify user %s", user_id, exc_info=True)
