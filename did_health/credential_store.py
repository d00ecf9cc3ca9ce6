"""
Credential Store
================

Append-only store of issued credentials, indexed by subject and issuer DID.

- Records are never deleted; revocation is the only mutation and is one-way.
- The stored vcData is a private deep copy; readers always get copies.
- Every operation takes an optional timeout. A timeout surfaces as
  StoreUnavailable and never leaves a partial write behind.
"""

import copy
import uuid
import asyncio
import hashlib
import logging
from typing import Optional, Dict, Any, List, Tuple, Callable, Awaitable, TypeVar
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum

from .errors import DuplicateError, Forbidden, NotFound, StoreUnavailable
from .credential_issuer import (
    VerifiableCredential,
    canonical_json,
    format_timestamp,
    parse_timestamp,
    utcnow,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CredentialStatus(Enum):
    ACTIVE = "active"
    REVOKED = "revoked"
    EXPIRED = "expired"


def content_hash(vc_data: Dict[str, Any]) -> str:
    """SHA-256 of the full canonical credential document"""
    return hashlib.sha256(canonical_json(vc_data)).hexdigest()


@dataclass
class StoredCredential:
    """A persisted credential record"""
    id: str
    issuer_did: str
    subject_did: str
    credential_type: str
    vc_data: Dict[str, Any]
    proof_signature: str
    content_hash: str
    issuance_date: datetime
    created_at: datetime
    expiration_date: Optional[datetime] = None
    revoked: bool = False
    revoked_at: Optional[datetime] = None
    sequence: int = 0

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expiration_date is None:
            return False
        return (now or utcnow()) >= self.expiration_date

    def status(self, now: Optional[datetime] = None) -> CredentialStatus:
        """Revoked is authoritative; expired is derived at read time"""
        if self.revoked:
            return CredentialStatus.REVOKED
        if self.is_expired(now):
            return CredentialStatus.EXPIRED
        return CredentialStatus.ACTIVE

    def copy(self) -> "StoredCredential":
        return replace(self, vc_data=copy.deepcopy(self.vc_data))

    def to_dict(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        return {
            "id": self.id,
            "issuerDid": self.issuer_did,
            "subjectDid": self.subject_did,
            "credentialType": self.credential_type,
            "vcData": copy.deepcopy(self.vc_data),
            "proofSignature": self.proof_signature,
            "issuanceDate": format_timestamp(self.issuance_date),
            "expirationDate": format_timestamp(self.expiration_date) if self.expiration_date else None,
            "status": self.status(now).value,
            "isRevoked": self.revoked,
            "revokedAt": format_timestamp(self.revoked_at) if self.revoked_at else None,
            "createdAt": format_timestamp(self.created_at)
        }


class CredentialStore:
    """
    In-memory credential store

    Writes are serialised by an asyncio.Lock. Reads see the most recent
    completed write.
    """

    def __init__(self, timeout: float = 5.0, clock: Callable[[], datetime] = utcnow):
        self.timeout = timeout
        self.clock = clock
        self._records: Dict[str, StoredCredential] = {}
        self._by_subject: Dict[str, List[str]] = {}
        self._by_issuer: Dict[str, List[str]] = {}
        self._hashes: Dict[tuple, str] = {}
        self._sequence = 0
        self._lock = asyncio.Lock()

    # ==================== PLUMBING ====================

    async def _io(self) -> None:
        """Round trip to the backing store. Yields to the event loop."""
        await asyncio.sleep(0)

    async def _guard(self, operation: Awaitable[T], timeout: Optional[float]) -> T:
        limit = self.timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(operation, limit)
        except asyncio.TimeoutError:
            raise StoreUnavailable(f"Credential store did not answer within {limit}s") from None

    def _sorted(self, ids: List[str]) -> List[StoredCredential]:
        records = [self._records[i] for i in ids]
        records.sort(key=lambda r: (r.issuance_date, r.sequence), reverse=True)
        return [r.copy() for r in records]

    # ==================== WRITES ====================

    async def save(self, credential: VerifiableCredential, timeout: Optional[float] = None) -> StoredCredential:
        """
        Persist a credential

        Raises:
            DuplicateError: the same document is already stored for this subject
            StoreUnavailable: timeout; nothing was written
        """
        return await self._guard(self._save(credential), timeout)

    async def _save(self, credential: VerifiableCredential) -> StoredCredential:
        vc_data = credential.to_dict()
        subject = credential.subject_did
        digest = content_hash(vc_data)

        async with self._lock:
            await self._io()

            if (subject, digest) in self._hashes:
                raise DuplicateError(f"Credential already stored for {subject}")

            self._sequence += 1
            expiration = credential.expiration_date
            record = StoredCredential(
                id=str(uuid.uuid4()),
                issuer_did=credential.issuer,
                subject_did=subject,
                credential_type=credential.credential_type,
                vc_data=vc_data,
                proof_signature=(credential.proof or {}).get("signatureValue", ""),
                content_hash=digest,
                issuance_date=parse_timestamp(credential.issuance_date),
                created_at=self.clock(),
                expiration_date=parse_timestamp(expiration) if expiration else None,
                sequence=self._sequence
            )

            self._records[record.id] = record
            self._by_subject.setdefault(subject, []).append(record.id)
            self._by_issuer.setdefault(record.issuer_did, []).append(record.id)
            self._hashes[(subject, digest)] = record.id

        logger.info("Stored %s %s (issuer=%s subject=%s)", record.credential_type, record.id, record.issuer_did, subject)
        return record.copy()

    async def revoke(self, credential_id: str, requesting_did: str, timeout: Optional[float] = None) -> StoredCredential:
        """
        Revoke a credential. Only its issuer may revoke; revoking twice is a no-op.

        Raises:
            NotFound: unknown credential id
            Forbidden: requester is not the issuer
        """
        record, _ = await self.revoke_with_outcome(credential_id, requesting_did, timeout)
        return record

    async def revoke_with_outcome(
        self,
        credential_id: str,
        requesting_did: str,
        timeout: Optional[float] = None
    ) -> Tuple[StoredCredential, bool]:
        """
        Revoke a credential and report whether this call flipped it

        The flag is decided under the store lock: of several concurrent
        revokes of one active credential exactly one sees True.
        """
        return await self._guard(self._revoke(credential_id, requesting_did), timeout)

    async def _revoke(self, credential_id: str, requesting_did: str) -> Tuple[StoredCredential, bool]:
        async with self._lock:
            await self._io()

            record = self._records.get(credential_id)
            if record is None:
                raise NotFound(f"Credential not found: {credential_id}")
            if record.issuer_did != requesting_did:
                raise Forbidden("Only the issuer can revoke this credential")

            changed = not record.revoked
            if changed:
                record.revoked = True
                record.revoked_at = self.clock()
                logger.info("Revoked credential %s", credential_id)

            return record.copy(), changed

    # ==================== READS ====================

    async def find_by_id(self, credential_id: str, timeout: Optional[float] = None) -> StoredCredential:
        return await self._guard(self._find_by_id(credential_id), timeout)

    async def _find_by_id(self, credential_id: str) -> StoredCredential:
        await self._io()
        record = self._records.get(credential_id)
        if record is None:
            raise NotFound(f"Credential not found: {credential_id}")
        return record.copy()

    async def find_by_subject(self, did: str, timeout: Optional[float] = None) -> List[StoredCredential]:
        """Credentials about a subject, newest issuance first"""
        return await self._guard(self._find(self._by_subject, did), timeout)

    async def find_by_issuer(self, did: str, timeout: Optional[float] = None) -> List[StoredCredential]:
        """Credentials issued by a DID, newest issuance first"""
        return await self._guard(self._find(self._by_issuer, did), timeout)

    async def _find(self, index: Dict[str, List[str]], did: str) -> List[StoredCredential]:
        await self._io()
        return self._sorted(list(index.get(did, [])))

    # ==================== STATISTICS ====================

    async def count_by_subject(self, did: str, timeout: Optional[float] = None) -> Dict[str, int]:
        return await self._guard(self._count(self._by_subject.get(did, [])), timeout)

    async def count_by_issuer(self, did: str, timeout: Optional[float] = None) -> Dict[str, int]:
        return await self._guard(self._count(self._by_issuer.get(did, [])), timeout)

    async def count(self, timeout: Optional[float] = None) -> Dict[str, int]:
        """Totals over the whole store, by status"""
        return await self._guard(self._count(self._records.keys()), timeout)

    async def _count(self, ids) -> Dict[str, int]:
        await self._io()
        now = self.clock()
        totals = {status.value: 0 for status in CredentialStatus}
        ids = list(ids)
        for credential_id in ids:
            totals[self._records[credential_id].status(now).value] += 1
        return {"total": len(ids), **totals}
