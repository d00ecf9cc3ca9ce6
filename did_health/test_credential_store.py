"""
Credential Store Tests
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from did_health.errors import DuplicateError, Forbidden, NotFound, StoreUnavailable
from did_health.credential_issuer import CredentialFactory
from did_health.credential_store import CredentialStore, CredentialStatus

ISSUER = "did:example:doctorjane0123456789ab"
OTHER_DOCTOR = "did:example:doctorbob0123456789ab"
SUBJECT = "did:example:patientjohn0123456789ab"

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


class SlowStore(CredentialStore):
    """Store whose backend round trip takes longer than any sane timeout"""

    async def _io(self) -> None:
        await asyncio.sleep(1)


class TestCredentialStore:

    def setup_method(self):
        self.store = CredentialStore(clock=lambda: NOW)
        self.factory = CredentialFactory(clock=lambda: NOW)

    def _vc(self, credential_type="HealthCheckupCredential", issued_at=None, issuer=ISSUER, **kwargs):
        return self.factory.issue(issuer, SUBJECT, credential_type, issued_at=issued_at, **kwargs)

    @pytest.mark.asyncio
    async def test_save_and_find(self):
        vc = self._vc()
        record = await self.store.save(vc)

        assert record.id
        assert record.subject_did == SUBJECT
        assert record.issuer_did == ISSUER
        assert record.credential_type == "HealthCheckupCredential"
        assert record.vc_data == vc.to_dict()
        assert record.proof_signature == vc.proof["signatureValue"]
        assert (await self.store.find_by_id(record.id)).vc_data == vc.to_dict()
        print(f"✅ Stored credential {record.id}")

    @pytest.mark.asyncio
    async def test_duplicate_document(self):
        vc = self._vc()
        await self.store.save(vc)
        with pytest.raises(DuplicateError):
            await self.store.save(vc)

    @pytest.mark.asyncio
    async def test_newest_first(self):
        old = await self.store.save(self._vc(issued_at=NOW - timedelta(days=10)))
        new = await self.store.save(self._vc(issued_at=NOW - timedelta(days=1)))
        middle = await self.store.save(self._vc(issued_at=NOW - timedelta(days=5), issuer=OTHER_DOCTOR))

        by_subject = await self.store.find_by_subject(SUBJECT)
        assert [r.id for r in by_subject] == [new.id, middle.id, old.id]

        by_issuer = await self.store.find_by_issuer(ISSUER)
        assert [r.id for r in by_issuer] == [new.id, old.id]
        assert await self.store.find_by_subject("did:example:nobody") == []

    @pytest.mark.asyncio
    async def test_records_are_copies(self):
        record = await self.store.save(self._vc())
        record.vc_data["credentialSubject"]["patientName"] = "Mallory"

        stored = await self.store.find_by_id(record.id)
        assert stored.vc_data["credentialSubject"]["patientName"] != "Mallory"

    @pytest.mark.asyncio
    async def test_find_unknown_id(self):
        with pytest.raises(NotFound):
            await self.store.find_by_id("missing")

    @pytest.mark.asyncio
    async def test_revoke_is_idempotent_and_issuer_only(self):
        record = await self.store.save(self._vc())

        with pytest.raises(Forbidden):
            await self.store.revoke(record.id, OTHER_DOCTOR)
        with pytest.raises(Forbidden):
            await self.store.revoke(record.id, SUBJECT)
        with pytest.raises(NotFound):
            await self.store.revoke("missing", ISSUER)

        first = await self.store.revoke(record.id, ISSUER)
        second = await self.store.revoke(record.id, ISSUER)

        assert first.revoked and second.revoked
        assert first.revoked_at == second.revoked_at
        assert second.status(NOW) is CredentialStatus.REVOKED
        print("✅ Revocation is idempotent")

    @pytest.mark.asyncio
    async def test_expired_status_is_derived(self):
        record = await self.store.save(self._vc("VaccinationCredential", issued_at=NOW - timedelta(days=6 * 365)))

        assert record.status(NOW) is CredentialStatus.EXPIRED
        assert record.status(record.expiration_date - timedelta(seconds=1)) is CredentialStatus.ACTIVE
        assert record.status(record.expiration_date) is CredentialStatus.EXPIRED

        revoked = await self.store.revoke(record.id, ISSUER)
        assert revoked.status(NOW) is CredentialStatus.REVOKED

    @pytest.mark.asyncio
    async def test_counts(self):
        active = await self.store.save(self._vc())
        await self.store.save(self._vc("VaccinationCredential", issued_at=NOW - timedelta(days=6 * 365)))
        await self.store.save(self._vc("BloodTestCredential", issuer=OTHER_DOCTOR))
        await self.store.revoke(active.id, ISSUER)

        assert await self.store.count() == {"total": 3, "active": 1, "revoked": 1, "expired": 1}
        assert (await self.store.count_by_issuer(ISSUER))["total"] == 2
        assert (await self.store.count_by_subject(SUBJECT))["total"] == 3
        assert (await self.store.count_by_subject("did:example:nobody"))["total"] == 0

    @pytest.mark.asyncio
    async def test_timeout_leaves_no_partial_write(self):
        store = SlowStore(clock=lambda: NOW)

        with pytest.raises(StoreUnavailable):
            await store.save(self._vc(), timeout=0.01)
        with pytest.raises(StoreUnavailable):
            await store.find_by_subject(SUBJECT, timeout=0.01)

        assert store._records == {}
        assert (await store.count(timeout=5))["total"] == 0

    @pytest.mark.asyncio
    async def test_concurrent_saves(self):
        vcs = [self._vc(issued_at=NOW - timedelta(minutes=i)) for i in range(20)]
        records = await asyncio.gather(*(self.store.save(vc) for vc in vcs))

        assert len({r.id for r in records}) == 20
        assert len(await self.store.find_by_subject(SUBJECT)) == 20

    @pytest.mark.asyncio
    async def test_concurrent_revokes_flip_once(self):
        record = await self.store.save(self._vc())
        outcomes = await asyncio.gather(
            *(self.store.revoke_with_outcome(record.id, ISSUER) for _ in range(5))
        )

        assert [changed for _, changed in outcomes].count(True) == 1
        assert all(r.revoked for r, _ in outcomes)
        assert len({r.revoked_at for r, _ in outcomes}) == 1

    @pytest.mark.asyncio
    async def test_to_dict(self):
        record = await self.store.save(self._vc("VaccinationCredential"))
        data = record.to_dict(NOW)

        assert data["status"] == "active"
        assert data["isRevoked"] is False
        assert data["subjectDid"] == SUBJECT
        assert data["expirationDate"].startswith("2029-06-01")
