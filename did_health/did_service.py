"""
DID System Integration Service
===============================

Wires the DID healthcare core together from configuration:
- Identity registry (key generation + DID Documents)
- Credential factory, store and verifier
- Issuance service and notifications
"""

import logging
from typing import Optional, Dict, Any, List

from .config import DIDSettings, settings as default_settings
from .errors import NotFound, ValidationError
from .key_manager import KeyManager, get_key_generator
from .did_manager import DIDManager, Principal, Registration
from .proofs import (
    PlaceholderSigner,
    PlaceholderSignatureChecker,
    KeyPairSigner,
    KeyPairSignatureChecker,
)
from .credential_issuer import CredentialFactory, CredentialTypeRegistry, default_registry
from .credential_store import CredentialStore, StoredCredential
from .credential_verifier import CredentialVerifier, RawCredential, VerificationReport
from .issuance import IssuanceService, IssuedCredential
from .notifications import NotificationCenter

logger = logging.getLogger(__name__)

SAMPLE_PATIENT_NAME = "John Doe"


class DIDService:
    """
    Main service class for DID operations

    Provides a unified interface for:
    - Registration and DID login
    - Credential issuance, listing and revocation
    - Credential verification
    - Public DID Document lookup
    """

    def __init__(
        self,
        settings: Optional[DIDSettings] = None,
        registry: Optional[CredentialTypeRegistry] = None,
        store: Optional[CredentialStore] = None,
        notifications: Optional[NotificationCenter] = None
    ):
        self.settings = settings or default_settings
        cfg = self.settings

        self.key_manager = KeyManager(get_key_generator(cfg.KEY_TYPE), method=cfg.DID_METHOD)
        self.did_manager = DIDManager(self.key_manager, service_endpoint=cfg.SERVICE_ENDPOINT)

        # Placeholder keys cannot sign, so they get placeholder proofs
        if cfg.KEY_TYPE.lower() == "placeholder":
            signer, checker = PlaceholderSigner(), PlaceholderSignatureChecker()
        else:
            signer = KeyPairSigner(self.did_manager.get_key_pair)
            checker = KeyPairSignatureChecker(self.did_manager.resolve)

        self.registry = registry or default_registry(cfg.VACCINATION_VALIDITY_YEARS)
        self.factory = CredentialFactory(signer=signer, registry=self.registry)
        self.store = store or CredentialStore(timeout=cfg.STORE_TIMEOUT_SECONDS)
        self.notifications = notifications or NotificationCenter(
            queue_size=cfg.NOTIFICATION_QUEUE_SIZE,
            max_inbox=cfg.NOTIFICATION_INBOX_LIMIT
        )

        self.verifier = CredentialVerifier(
            store=self.store,
            checker=checker,
            max_payload_bytes=cfg.MAX_VC_PAYLOAD_BYTES,
            check_revocation=cfg.CHECK_REVOCATION
        )
        self.issuance = IssuanceService(
            did_manager=self.did_manager,
            factory=self.factory,
            store=self.store,
            notifier=self.notifications.notify
        )

        logger.info("DID service ready (method=%s, keys=%s)", cfg.DID_METHOD, cfg.KEY_TYPE)

    # ==================== IDENTITY ====================

    def register(self, name: str, email: str, role: str, **profile: Any) -> Registration:
        return self.did_manager.register(name, email, role, **profile)

    def login(self, did_identifier: str) -> Principal:
        """Authenticate by DID. Possession of the DID string is the only factor in this demo."""
        if not did_identifier:
            raise ValidationError("DID identifier is required")
        principal = self.did_manager.get_principal_by_did(did_identifier)
        if principal is None:
            raise NotFound("DID not found. Please register first.")
        logger.info("DID login for principal %s", principal.id)
        return principal

    def get_principal(self, principal_id: str) -> Principal:
        principal = self.did_manager.get_principal(principal_id)
        if principal is None:
            raise NotFound(f"Principal not found: {principal_id}")
        return principal

    def did_document(self, did: str) -> Dict[str, Any]:
        """Public DID profile. Contains no private key material."""
        return self.did_manager.get_identity(did).public_profile()

    # ==================== CREDENTIALS ====================

    async def issue_credential(
        self,
        issuer: Principal,
        subject_did: str,
        credential_type: str,
        claims: Optional[Dict[str, Any]] = None
    ) -> IssuedCredential:
        return await self.issuance.issue_to_patient(issuer, subject_did, credential_type, claims)

    async def credentials_for(self, principal: Principal) -> List[StoredCredential]:
        return await self.issuance.credentials_for(principal)

    async def get_credential(self, credential_id: str, principal: Principal) -> StoredCredential:
        return await self.issuance.get_credential(credential_id, principal)

    async def revoke_credential(self, credential_id: str, principal: Principal) -> StoredCredential:
        return await self.issuance.revoke(credential_id, principal)

    async def verify_credential(self, raw: RawCredential) -> VerificationReport:
        return await self.verifier.verify(raw)

    def sample_credentials(self, patient_name: str = SAMPLE_PATIENT_NAME) -> Dict[str, Dict[str, Any]]:
        """Sample claims for every registered type that has a generator"""
        samples = {}
        for name in self.registry.names():
            claims = self.registry.sample(name, patient_name)
            if claims:
                samples[name] = claims
        return samples

    # ==================== STATISTICS ====================

    async def dashboard_stats(self, principal: Principal) -> Dict[str, Any]:
        return await self.issuance.dashboard_stats(principal)

    async def statistics(self) -> Dict[str, Any]:
        """Get overall DID system statistics"""
        return {
            "didMethod": self.settings.DID_METHOD,
            "keyType": self.settings.KEY_TYPE,
            "credentialTypes": self.registry.names(),
            "dids": self.did_manager.get_statistics(),
            "credentials": await self.store.count()
        }
