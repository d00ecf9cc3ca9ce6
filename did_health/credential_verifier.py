"""
Verifiable Credentials Verifier
================================

Verifies presented W3C Verifiable Credentials

Checks (all of them always run):
- Signature, through the injected SignatureChecker
- Expiration against the verification time
- Ledger membership: an identical document was issued and stored
- Revocation status of the stored record
"""

import json
import logging
from typing import Optional, Dict, Any, List, Union, Callable
from dataclasses import dataclass, field
from datetime import datetime

from .errors import MalformedCredentialError, StoreUnavailable
from .proofs import SignatureChecker, PlaceholderSignatureChecker
from .credential_store import CredentialStore, StoredCredential, content_hash
from .credential_issuer import (
    BASE_TYPE,
    format_timestamp,
    parse_timestamp,
    unsigned_payload,
    utcnow,
)

logger = logging.getLogger(__name__)

RawCredential = Union[str, bytes, Dict[str, Any]]

DEFAULT_MAX_PAYLOAD_BYTES = 64 * 1024


@dataclass
class VerificationReport:
    """Result of credential verification"""
    is_valid: bool
    signature_valid: bool
    expired: bool
    exists_in_store: bool
    revoked: bool
    issuer: str
    subject: str
    credential_type: str
    issuance_date: Optional[str]
    expiration_date: Optional[str]
    verified_at: str
    credential_id: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "signature": "valid" if self.signature_valid else "invalid",
            "signatureValid": self.signature_valid,
            "expired": self.expired,
            "existsInStore": self.exists_in_store,
            "revoked": self.revoked,
            "issuer": self.issuer,
            "subject": self.subject,
            "credentialType": self.credential_type,
            "issuanceDate": self.issuance_date,
            "expirationDate": self.expiration_date,
            "credentialId": self.credential_id,
            "errors": list(self.errors),
            "verifiedAt": self.verified_at
        }


def parse_credential(raw: RawCredential, max_payload_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES) -> Dict[str, Any]:
    """
    Decode a presented credential into a VC document

    Raises:
        MalformedCredentialError: too large, not JSON, not an object, or
            without a credentialSubject carrying a string id
    """
    if isinstance(raw, dict):
        try:
            size = len(json.dumps(raw).encode("utf-8"))
        except (TypeError, ValueError) as e:
            raise MalformedCredentialError(f"Credential is not JSON serialisable: {e}") from None
        if size > max_payload_bytes:
            raise MalformedCredentialError(f"Credential exceeds {max_payload_bytes} bytes")
        data = raw
    else:
        if isinstance(raw, str):
            raw = raw.encode("utf-8")
        if not isinstance(raw, bytes):
            raise MalformedCredentialError("Credential must be JSON text or an object")
        size = len(raw)
        if size > max_payload_bytes:
            raise MalformedCredentialError(f"Credential exceeds {max_payload_bytes} bytes")
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedCredentialError(f"Invalid JSON: {e}") from None

    if not isinstance(data, dict):
        raise MalformedCredentialError("Credential must be a JSON object")

    subject = data.get("credentialSubject")
    if not isinstance(subject, dict) or not isinstance(subject.get("id"), str):
        raise MalformedCredentialError("Missing credentialSubject.id")

    return data


def _credential_type(data: Dict[str, Any]) -> str:
    types = data.get("type")
    if isinstance(types, str):
        types = [types]
    if not isinstance(types, list):
        return "Unknown"
    return next((t for t in types if isinstance(t, str) and t != BASE_TYPE), "Unknown")


def _as_text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


class CredentialVerifier:
    """
    Verifies Verifiable Credentials

    Performs the following checks:
    1. Signature verification
    2. Expiration check
    3. Ledger membership
    4. Revocation check (switchable)

    A credential is valid only if every enabled check passes.
    """

    def __init__(
        self,
        store: CredentialStore,
        checker: Optional[SignatureChecker] = None,
        max_payload_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES,
        check_revocation: bool = True,
        store_timeout: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.store = store
        self.checker = checker or PlaceholderSignatureChecker()
        self.max_payload_bytes = max_payload_bytes
        self.check_revocation = check_revocation
        self.store_timeout = store_timeout
        self.clock = clock

    # ==================== VERIFICATION ====================

    async def verify(self, raw: RawCredential, now: Optional[datetime] = None) -> VerificationReport:
        """
        Verify a presented credential

        Args:
            raw: VC document as JSON text, UTF-8 bytes or an already decoded dict
            now: Verification time (defaults to the clock)

        Returns:
            VerificationReport with every check's outcome

        Raises:
            MalformedCredentialError: the payload is not a VC document
        """
        data = parse_credential(raw, self.max_payload_bytes)
        now = now or self.clock()
        errors: List[str] = []

        issuer = data.get("issuer")
        subject = data["credentialSubject"]["id"]

        # 1. Signature
        signature_valid = self._check_signature(data, errors)

        # 2. Expiration
        expired = self._check_expiration(data.get("expirationDate"), now, errors)

        # 3. Ledger membership
        record = await self._find_in_store(data, subject, errors)
        exists_in_store = record is not None

        # 4. Revocation
        revoked = bool(record and record.revoked)
        if revoked:
            errors.append("Credential has been revoked")

        is_valid = signature_valid and not expired and exists_in_store
        if self.check_revocation:
            is_valid = is_valid and not revoked

        report = VerificationReport(
            is_valid=is_valid,
            signature_valid=signature_valid,
            expired=expired,
            exists_in_store=exists_in_store,
            revoked=revoked,
            issuer=issuer if isinstance(issuer, str) else "",
            subject=subject,
            credential_type=_credential_type(data),
            issuance_date=_as_text(data.get("issuanceDate")),
            expiration_date=_as_text(data.get("expirationDate")),
            verified_at=format_timestamp(now),
            credential_id=record.id if record else None,
            errors=errors
        )

        logger.info(
            "Verified %s for %s: valid=%s signature=%s expired=%s stored=%s revoked=%s",
            report.credential_type, subject, is_valid, signature_valid, expired, exists_in_store, revoked
        )
        return report

    # ==================== CHECKS ====================

    def _check_signature(self, data: Dict[str, Any], errors: List[str]) -> bool:
        proof = data.get("proof")
        issuer = data.get("issuer")

        if not isinstance(proof, dict):
            errors.append("Missing proof")
            return False
        if not isinstance(issuer, str) or not issuer:
            errors.append("Missing issuer")
            return False

        if not self.checker.check(unsigned_payload(data), proof, issuer):
            errors.append("Signature verification failed")
            return False
        return True

    def _check_expiration(self, expiration: Any, now: datetime, errors: List[str]) -> bool:
        if expiration is None:
            return False

        try:
            expires_at = parse_timestamp(expiration)
        except (TypeError, ValueError, AttributeError):
            errors.append(f"Invalid expiration date: {expiration!r}")
            return True

        if now >= expires_at:
            errors.append("Credential has expired")
            return True
        return False

    async def _find_in_store(
        self,
        data: Dict[str, Any],
        subject: str,
        errors: List[str]
    ) -> Optional[StoredCredential]:
        try:
            records = await self.store.find_by_subject(subject, timeout=self.store_timeout)
        except StoreUnavailable as e:
            logger.warning("Ledger check skipped: %s", e)
            errors.append(f"Credential store unavailable: {e.message}")
            return None

        # canonical bytes, so 1, 1.0 and true stay distinct
        presented = content_hash(data)
        for record in records:
            if record.content_hash == presented:
                return record

        errors.append("Credential not found in store")
        return None
