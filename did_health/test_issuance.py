"""
Issuance, verification and notification tests

End-to-end flows through DIDService: doctors issue to patients, anyone
verifies, issuers revoke.
"""

import json
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from did_health.config import get_settings
from did_health.did_service import DIDService
from did_health.credential_store import CredentialStore, CredentialStatus
from did_health.credential_verifier import CredentialVerifier
from did_health.errors import (
    Forbidden,
    InvalidCredentialType,
    MalformedCredentialError,
    NotFound,
    StoreUnavailable,
    ValidationError,
)
from did_health.notifications import NotificationCenter


class UnavailableStore(CredentialStore):
    async def find_by_subject(self, did, timeout=None):
        raise StoreUnavailable("backend down")


def _setup(service: DIDService):
    doctor = service.register("Dr. Jane Smith", "jane@example.com", "doctor", specialty="GP", license_number="LIC-1").principal
    patient = service.register("John Doe", "john@example.com", "patient").principal
    return doctor, patient


class TestIssuanceService:

    def setup_method(self):
        self.service = DIDService(get_settings())
        self.doctor, self.patient = _setup(self.service)

    @pytest.mark.asyncio
    async def test_vaccination_issue_then_list(self):
        issued = await self.service.issue_credential(self.doctor, self.patient.did_identifier, "VaccinationCredential")

        subject = issued.vc_document["credentialSubject"]
        assert subject["id"] == self.patient.did_identifier
        assert subject["patientName"] == "John Doe"
        assert subject["vaccineName"] and subject["manufacturer"] and subject["batchNumber"]
        assert "expirationDate" in issued.vc_document

        listed = await self.service.credentials_for(self.patient)
        assert [r.id for r in listed] == [issued.record.id]
        assert listed[0].status() is CredentialStatus.ACTIVE

        issued_by_doctor = await self.service.credentials_for(self.doctor)
        assert [r.id for r in issued_by_doctor] == [issued.record.id]
        print(f"✅ Vaccination credential issued: {issued.record.id}")

    @pytest.mark.asyncio
    async def test_patient_cannot_issue(self):
        with pytest.raises(Forbidden):
            await self.service.issue_credential(self.patient, self.patient.did_identifier, "VaccinationCredential")
        # authorization is checked before anything else
        with pytest.raises(Forbidden):
            await self.service.issue_credential(self.patient, "", "NoSuchCredential")

    @pytest.mark.asyncio
    async def test_invalid_type_then_unknown_patient(self):
        with pytest.raises(InvalidCredentialType):
            await self.service.issue_credential(self.doctor, "did:example:nobody", "NoSuchCredential")
        with pytest.raises(NotFound):
            await self.service.issue_credential(self.doctor, "did:example:nobody", "BloodTestCredential")
        with pytest.raises(NotFound):
            await self.service.issue_credential(self.doctor, self.doctor.did_identifier, "BloodTestCredential")

    @pytest.mark.asyncio
    async def test_custom_claims(self):
        issued = await self.service.issue_credential(
            self.doctor, self.patient.did_identifier, "BloodTestCredential", {"glucose": "101 mg/dL"}
        )
        assert issued.vc_document["credentialSubject"] == {"id": self.patient.did_identifier, "glucose": "101 mg/dL"}

    @pytest.mark.asyncio
    async def test_issuance_notifies_patient(self):
        queue = self.service.notifications.subscribe(self.patient.id)
        issued = await self.service.issue_credential(self.doctor, self.patient.did_identifier, "AppointmentCredential")

        event = queue.get_nowait()
        assert event["title"] == "New Credential Issued"
        assert event["metadata"]["credentialId"] == issued.record.id

        inbox = self.service.notifications.inbox(self.patient.id)
        assert len(inbox) == 1 and inbox[0].kind == "success"

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_roll_back(self):
        def broken(*args):
            raise RuntimeError("transport down")

        self.service.issuance.notifier = broken
        issued = await self.service.issue_credential(self.doctor, self.patient.did_identifier, "PrescriptionCredential")

        assert await self.service.store.find_by_id(issued.record.id)

    @pytest.mark.asyncio
    async def test_get_credential_access(self):
        issued = await self.service.issue_credential(self.doctor, self.patient.did_identifier, "HealthCheckupCredential")
        other = self.service.register("Mallory", "mallory@example.com", "patient").principal
        admin = self.service.register("Root", "root@example.com", "admin").principal

        assert (await self.service.get_credential(issued.record.id, self.patient)).id == issued.record.id
        assert (await self.service.get_credential(issued.record.id, self.doctor)).id == issued.record.id
        assert (await self.service.get_credential(issued.record.id, admin)).id == issued.record.id
        with pytest.raises(Forbidden):
            await self.service.get_credential(issued.record.id, other)
        assert await self.service.credentials_for(admin) == []

    @pytest.mark.asyncio
    async def test_dashboard_stats(self):
        issued = await self.service.issue_credential(self.doctor, self.patient.did_identifier, "HealthCheckupCredential")
        await self.service.revoke_credential(issued.record.id, self.doctor)
        admin = self.service.register("Root", "root@example.com", "admin").principal

        assert await self.service.dashboard_stats(self.patient) == {"totalCredentials": 1, "activeCredentials": 0}
        assert await self.service.dashboard_stats(self.doctor) == {"credentialsIssued": 1, "credentialsRevoked": 1}
        admin_stats = await self.service.dashboard_stats(admin)
        assert admin_stats["totalUsers"] == 3 and admin_stats["totalCredentials"] == 1

    def test_login(self):
        assert self.service.login(self.patient.did_identifier) == self.patient
        with pytest.raises(NotFound):
            self.service.login("did:example:unknown")
        with pytest.raises(ValidationError):
            self.service.login("")

    def test_sample_credentials(self):
        samples = self.service.sample_credentials()
        assert samples["VaccinationCredential"]["patientName"] == "John Doe"
        assert len(samples) == 5


class TestVerification:

    def setup_method(self):
        self.service = DIDService(get_settings())
        self.doctor, self.patient = _setup(self.service)

    async def _issue(self, credential_type="BloodTestCredential"):
        return await self.service.issue_credential(self.doctor, self.patient.did_identifier, credential_type)

    @pytest.mark.asyncio
    async def test_round_trip_validity(self):
        issued = await self._issue()
        report = await self.service.verify_credential(json.dumps(issued.vc_document))

        assert report.is_valid is True
        assert report.signature_valid and report.exists_in_store
        assert not report.expired and not report.revoked
        assert report.credential_id == issued.record.id
        assert report.credential_type == "BloodTestCredential"
        assert report.to_dict()["signature"] == "valid"
        print("✅ Issued credential verifies")

    @pytest.mark.asyncio
    async def test_accepts_bytes_and_dict(self):
        issued = await self._issue()
        assert (await self.service.verify_credential(issued.vc_document)).is_valid
        assert (await self.service.verify_credential(json.dumps(issued.vc_document).encode())).is_valid

    @pytest.mark.asyncio
    async def test_revocation_is_monotonic(self):
        issued = await self._issue()
        await self.service.revoke_credential(issued.record.id, self.doctor)
        again = await self.service.revoke_credential(issued.record.id, self.doctor)

        report = await self.service.verify_credential(issued.vc_document)
        assert report.exists_in_store is True
        assert report.revoked is True
        assert report.is_valid is False
        assert again.status() is CredentialStatus.REVOKED

    @pytest.mark.asyncio
    async def test_concurrent_revokes_notify_once(self):
        issued = await self._issue()
        await asyncio.gather(
            self.service.revoke_credential(issued.record.id, self.doctor),
            self.service.revoke_credential(issued.record.id, self.doctor)
        )

        inbox = self.service.notifications.inbox(self.patient.id)
        assert [n.title for n in inbox].count("Credential Revoked") == 1

    @pytest.mark.asyncio
    async def test_only_issuer_revokes(self):
        issued = await self._issue()
        with pytest.raises(Forbidden):
            await self.service.revoke_credential(issued.record.id, self.patient)

    @pytest.mark.asyncio
    async def test_revocation_check_can_be_disabled(self):
        issued = await self._issue()
        await self.service.revoke_credential(issued.record.id, self.doctor)
        verifier = CredentialVerifier(self.service.store, check_revocation=False)

        report = await verifier.verify(issued.vc_document)
        assert report.revoked is True
        assert report.is_valid is True

    @pytest.mark.asyncio
    async def test_expiry_boundary(self):
        issued = await self._issue("VaccinationCredential")
        expires = datetime.fromisoformat(issued.vc_document["expirationDate"].replace("Z", "+00:00"))

        before = await self.service.verifier.verify(issued.vc_document, now=expires - timedelta(milliseconds=1))
        at = await self.service.verifier.verify(issued.vc_document, now=expires)

        assert before.expired is False and before.is_valid is True
        assert at.expired is True and at.is_valid is False

    @pytest.mark.asyncio
    async def test_expired_vaccination(self):
        issued_at = datetime.now(timezone.utc) - timedelta(days=6 * 365)
        vc = self.service.factory.issue(
            self.doctor.did_identifier,
            self.patient.did_identifier,
            "VaccinationCredential",
            issued_at=issued_at
        )
        await self.service.store.save(vc)

        report = await self.service.verify_credential(vc.to_dict())
        assert report.expired is True
        assert report.exists_in_store is True
        assert report.is_valid is False

    @pytest.mark.asyncio
    async def test_unparseable_expiration_counts_as_expired(self):
        issued = await self._issue()
        document = dict(issued.vc_document, expirationDate="next tuesday")

        report = await self.service.verify_credential(document)
        assert report.expired is True
        assert any("expiration" in e for e in report.errors)

    @pytest.mark.asyncio
    async def test_tampering_is_detected(self):
        issued = await self._issue()
        tampered = json.loads(json.dumps(issued.vc_document))
        tampered["credentialSubject"]["status"] = "Abnormal"

        report = await self.service.verify_credential(tampered)
        assert report.exists_in_store is False
        assert report.is_valid is False

    @pytest.mark.asyncio
    async def test_json_type_changes_are_tampering(self):
        # 1 == True == 1.0 in Python, but not in the issued document
        for credential_type, claim, value in (
            ("VaccinationCredential", "doseNumber", True),
            ("PrescriptionCredential", "refills", 0.0),
        ):
            issued = await self._issue(credential_type)
            tampered = json.loads(json.dumps(issued.vc_document))
            tampered["credentialSubject"][claim] = value

            report = await self.service.verify_credential(json.dumps(tampered))
            assert report.exists_in_store is False, claim
            assert report.is_valid is False, claim

    @pytest.mark.asyncio
    async def test_forged_signature(self):
        issued = await self._issue()
        forged = json.loads(json.dumps(issued.vc_document))
        forged["proof"]["signatureValue"] = "forged"

        report = await self.service.verify_credential(forged)
        assert report.signature_valid is False
        assert report.is_valid is False

    @pytest.mark.asyncio
    async def test_malformed_input(self):
        for raw in ("not json", "[1, 2]", "{}", json.dumps({"credentialSubject": {"id": 7}}), b"\xff\xfe"):
            with pytest.raises(MalformedCredentialError):
                await self.service.verify_credential(raw)

    @pytest.mark.asyncio
    async def test_payload_size_bound(self):
        verifier = CredentialVerifier(self.service.store, max_payload_bytes=128)
        document = {"credentialSubject": {"id": "did:example:x", "blob": "x" * 500}}

        with pytest.raises(MalformedCredentialError):
            await verifier.verify(json.dumps(document))
        with pytest.raises(MalformedCredentialError):
            await verifier.verify(document)

    @pytest.mark.asyncio
    async def test_store_unavailable_is_reported(self):
        issued = await self._issue()
        verifier = CredentialVerifier(UnavailableStore())

        report = await verifier.verify(issued.vc_document)
        assert report.exists_in_store is False
        assert report.is_valid is False
        assert any("unavailable" in e for e in report.errors)


class TestKeyPairService:
    """The same flows with real Ed25519 signatures"""

    def setup_method(self):
        self.service = DIDService(get_settings(KEY_TYPE="ed25519"))
        self.doctor, self.patient = _setup(self.service)

    @pytest.mark.asyncio
    async def test_signed_round_trip(self):
        issued = await self.service.issue_credential(self.doctor, self.patient.did_identifier, "HealthCheckupCredential")

        assert issued.vc_document["proof"]["type"] == "Ed25519Signature2020"
        assert (await self.service.verify_credential(issued.vc_document)).is_valid is True

    def test_did_document_is_public(self):
        profile = self.service.did_document(self.doctor.did_identifier)
        key_pair = self.service.did_manager.get_key_pair(self.doctor.did_identifier)

        assert profile["didDocument"]["verificationMethod"][0]["type"] == "Ed25519VerificationKey2020"
        assert key_pair.private_key not in json.dumps(profile)


class TestNotificationCenter:

    def setup_method(self):
        self.center = NotificationCenter(queue_size=1)

    def test_inbox_and_read(self):
        first = self.center.notify("u1", "One", "first")
        second = self.center.notify("u1", "Two", "second", kind="warning")

        assert [n.id for n in self.center.inbox("u1")] == [second.id, first.id]
        assert self.center.unread_count("u1") == 2

        self.center.mark_read(first.id, "u1")
        assert [n.id for n in self.center.inbox("u1", unread_only=True)] == [second.id]
        with pytest.raises(NotFound):
            self.center.mark_read(first.id, "u2")

    def test_inbox_is_capped(self):
        center = NotificationCenter(max_inbox=2)
        sent = [center.notify("u1", f"N{i}", "message") for i in range(3)]

        assert [n.id for n in center.inbox("u1")] == [sent[2].id, sent[1].id]
        assert center.unread_count("u1") == 2
        with pytest.raises(NotFound):
            center.mark_read(sent[0].id, "u1")

    def test_invalid_kind(self):
        with pytest.raises(ValidationError):
            self.center.notify("u1", "Bad", "bad", kind="panic")

    @pytest.mark.asyncio
    async def test_full_queue_does_not_block(self):
        queue = self.center.subscribe("u1")
        self.center.notify("u1", "One", "first")
        self.center.notify("u1", "Two", "second")

        assert queue.qsize() == 1
        assert len(self.center.inbox("u1")) == 2

        self.center.unsubscribe("u1", queue)
        assert self.center.subscriber_count("u1") == 0
        assert isinstance(queue, asyncio.Queue)
