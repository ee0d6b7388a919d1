"""Report lifecycle: numbering, status, the unread flag, files and delivery."""
import re
import uuid
from datetime import datetime

import pytest

from reporthub.config import settings
from reporthub.errors import (
    AuthorizationDenied,
    ConflictError,
    DeliveryError,
    NotFound,
    StorageError,
    ValidationError,
)
from reporthub.models.models import Report
from reporthub.services import lifecycle, reports


def pdf(name="survey.pdf", content=b"%PDF-1.4 data"):
    return lifecycle.IncomingFile(filename=name, content=content, content_type="application/pdf")


class TestReportNumber:
    @pytest.mark.parametrize("raw,expected", [
        ("1234", "WO1234"),
        ("WO1234", "WO1234"),
        ("  77 ", "WO77"),
    ])
    def test_prefix_applied_once(self, raw, expected):
        assert lifecycle.normalize_report_number(raw) == expected

    @pytest.mark.parametrize("raw", ["", "   ", None, "WO"])
    def test_blank_is_rejected(self, raw):
        with pytest.raises(ValidationError):
            lifecycle.normalize_report_number(raw)


class TestStatus:
    def test_unknown_status_rejected(self):
        with pytest.raises(ValidationError):
            lifecycle.validate_status("Archived")

    def test_free_overwrite_by_default(self):
        report = Report(report_number="WO1", vn_number="VN", status="Completed")
        lifecycle.apply_status(report, "Active")
        assert report.status == "Active"

    def test_guarded_transitions(self, monkeypatch):
        monkeypatch.setattr(settings, "enforce_status_transitions", True)
        report = Report(report_number="WO1", vn_number="VN", status="Active")
        lifecycle.apply_status(report, "Active")
        lifecycle.apply_status(report, "Completed")
        assert report.status == "Completed"
        with pytest.raises(ConflictError):
            lifecycle.apply_status(report, "Active")
        with pytest.raises(ConflictError):
            lifecycle.apply_status(report, "Rejected")


class TestUnreadFlag:
    def test_partner_marks_read(self, db, seed, as_principal):
        partner = seed.partner(seed.admin())
        report = seed.report(partner)
        assert report.is_new is True
        assert lifecycle.mark_read(db, as_principal(partner), report.id).is_new is False
        # idempotent
        assert lifecycle.mark_read(db, as_principal(partner), report.id).is_new is False

    def test_other_partner_cannot_mark_read(self, db, seed, as_principal):
        admin = seed.admin()
        report = seed.report(seed.partner(admin))
        intruder = seed.partner(admin, name="Partner Two")
        with pytest.raises(AuthorizationDenied):
            lifecycle.mark_read(db, as_principal(intruder), report.id)

    def test_admin_update_cannot_reset_flag(self, db, seed, as_principal):
        admin = seed.admin()
        partner = seed.partner(admin)
        report = seed.report(partner)
        lifecycle.mark_read(db, as_principal(partner), report.id)
        updated = reports.update_report(db, as_principal(admin), report.id, {"is_new": True, "vn_number": "VN2"})
        assert updated.vn_number == "VN2"
        assert updated.is_new is False

    def test_missing_report(self, db, seed, as_principal):
        with pytest.raises(NotFound):
            lifecycle.mark_read(db, as_principal(seed.partner(seed.admin())), uuid.uuid4())


class TestFiles:
    def test_storage_key_layout(self):
        key = lifecycle.report_file_key("WO1234", "Site Survey.PDF", index=2, now=datetime(2024, 5, 1))
        assert re.fullmatch(r"reports/2024/wo1234/\d+-2-site-survey\.pdf", key)

    def test_storage_key_is_deterministic_for_a_given_time(self):
        when = datetime(2024, 5, 1, 12, 0, 0)
        first = lifecycle.report_file_key("WO7", "a.pdf", now=when)
        assert first == lifecycle.report_file_key("WO7", "a.pdf", now=when)
        assert first == "reports/2024/wo7/1714564800000-0-a.pdf"

    def test_storage_key_defaults_extension(self):
        key = lifecycle.report_file_key("WO1", "scan", now=datetime(2023, 1, 1))
        assert key.endswith("-0-scan.pdf")

    def test_upload_limits(self, monkeypatch):
        monkeypatch.setattr(settings, "report_max_files", 2)
        monkeypatch.setattr(settings, "report_max_file_bytes", 8)
        with pytest.raises(ValidationError):
            lifecycle.check_upload_limits([pdf(content=b"1")] * 3)
        with pytest.raises(ValidationError):
            lifecycle.check_upload_limits([pdf(content=b"1")], existing=2)
        with pytest.raises(ValidationError):
            lifecycle.check_upload_limits([pdf(content=b"123456789")])
        with pytest.raises(ValidationError):
            lifecycle.check_upload_limits([pdf(content=b"")])
        lifecycle.check_upload_limits([pdf(content=b"12345678")], existing=1)

    def test_attach_then_detach(self, db, seed, storage, as_principal):
        admin = seed.admin()
        report = seed.report(seed.partner(admin))
        attached = lifecycle.attach_files(db, storage, as_principal(admin), report.id, [pdf("a.pdf"), pdf("b.pdf")])

        assert [f.original_name for f in attached.files] == ["a.pdf", "b.pdf"]
        assert [f.sort_index for f in attached.files] == [0, 1]
        assert set(storage.blobs) == {f.storage_path for f in attached.files}

        first = attached.files[0]
        remaining = lifecycle.detach_file(db, storage, as_principal(admin), report.id, first.id)
        assert [f.original_name for f in remaining.files] == ["b.pdf"]
        assert first.storage_path not in storage.blobs

        more = lifecycle.attach_files(db, storage, as_principal(admin), report.id, [pdf("c.pdf")])
        assert [f.sort_index for f in more.files] == [1, 2]

    def test_detach_tolerates_missing_blob(self, db, seed, storage, as_principal):
        admin = seed.admin()
        report = seed.report(seed.partner(admin))
        attached = lifecycle.attach_files(db, storage, as_principal(admin), report.id, [pdf()])
        storage.blobs.clear()
        assert lifecycle.detach_file(db, storage, as_principal(admin), report.id, attached.files[0].id).files == []

    def test_detach_commits_before_releasing_blob(self, db, seed, storage, as_principal):
        admin = seed.admin()
        report = seed.report(seed.partner(admin))
        attached = lifecycle.attach_files(db, storage, as_principal(admin), report.id, [pdf()])
        path = attached.files[0].storage_path
        storage.fail_delete = True

        remaining = lifecycle.detach_file(db, storage, as_principal(admin), report.id, attached.files[0].id)

        assert remaining.files == []
        db.refresh(report)
        assert report.files == []
        assert path in storage.blobs

    def test_detach_unknown_file(self, db, seed, storage, as_principal):
        admin = seed.admin()
        report = seed.report(seed.partner(admin))
        with pytest.raises(NotFound):
            lifecycle.detach_file(db, storage, as_principal(admin), report.id, uuid.uuid4())

    def test_partial_upload_failure_releases_written_blobs(self, db, seed, storage, as_principal):
        admin = seed.admin()
        report = seed.report(seed.partner(admin))
        storage.fail_put_after = 1
        with pytest.raises(StorageError):
            lifecycle.attach_files(db, storage, as_principal(admin), report.id, [pdf("a.pdf"), pdf("b.pdf")])
        assert storage.blobs == {}
        db.refresh(report)
        assert report.files == []

    def test_foreign_partner_cannot_attach(self, db, seed, storage, as_principal):
        partner = seed.partner(seed.admin())
        report = seed.report(partner)
        other = seed.partner(seed.admin("Admin B"))
        with pytest.raises(AuthorizationDenied):
            lifecycle.attach_files(db, storage, as_principal(other), report.id, [pdf()])

    def test_owning_partner_cannot_change_files(self, db, seed, storage, as_principal):
        admin = seed.admin()
        partner = seed.partner(admin)
        report = seed.report(partner)
        attached = lifecycle.attach_files(db, storage, as_principal(admin), report.id, [pdf()])

        with pytest.raises(AuthorizationDenied):
            lifecycle.attach_files(db, storage, as_principal(partner), report.id, [pdf("x.pdf")])
        with pytest.raises(AuthorizationDenied):
            lifecycle.detach_file(db, storage, as_principal(partner), report.id, attached.files[0].id)

        db.refresh(report)
        assert [f.original_name for f in report.files] == ["survey.pdf"]
        assert len(storage.blobs) == 1


class TestRecipientResolution:
    def test_unit_customer_wins(self, db, seed):
        partner = seed.partner(seed.admin())
        direct = seed.customer(partner, email="direct@example.com")
        via_unit = seed.customer(partner, email="unit-owner@example.com")
        report = seed.report(partner, customer=direct, unit=seed.unit(customer=via_unit))
        assert lifecycle.resolve_customer_recipient(db, report).email == "unit-owner@example.com"

    def test_partner_level_unit_is_rejected(self, db, seed):
        partner = seed.partner(seed.admin())
        report = seed.report(partner, unit=seed.unit(partner=partner))
        with pytest.raises(ValidationError) as exc:
            lifecycle.resolve_customer_recipient(db, report)
        assert "partner" in exc.value.message.lower()

    def test_dangling_unit_is_not_found(self, db, seed):
        partner = seed.partner(seed.admin())
        report = seed.report(partner)
        report.unit_id = uuid.uuid4()
        db.commit()
        with pytest.raises(NotFound):
            lifecycle.resolve_customer_recipient(db, report)

    def test_direct_customer(self, db, seed):
        partner = seed.partner(seed.admin())
        report = seed.report(partner, customer=seed.customer(partner, email="c@example.com"))
        recipient = lifecycle.resolve_customer_recipient(db, report)
        assert recipient.email == "c@example.com"
        assert recipient.unit is None

    def test_no_recipient(self, db, seed):
        report = seed.report(seed.partner(seed.admin()))
        with pytest.raises(ValidationError):
            lifecycle.resolve_customer_recipient(db, report)


class TestDelivery:
    @pytest.fixture
    def ready(self, db, seed, storage, as_principal):
        admin = seed.admin()
        partner = seed.partner(admin)
        customer = seed.customer(partner, email="end@example.com")
        report = seed.report(partner, customer=customer, unit=seed.unit(customer=customer))
        lifecycle.attach_files(db, storage, as_principal(admin), report.id, [pdf()])
        return admin, partner, report

    def test_send_to_customer_clears_flag(self, db, storage, mailer, ready, as_principal):
        _, partner, report = ready
        sent = lifecycle.send_to_customer(db, storage, mailer, as_principal(partner), report.id)
        assert sent.is_new is False
        assert mailer.sent[0]["to"] == "end@example.com"
        assert [a.filename for a in mailer.sent[0]["attachments"]] == ["survey.pdf"]

    def test_failed_delivery_keeps_flag(self, db, storage, mailer, ready, as_principal):
        _, partner, report = ready
        mailer.fail = True
        with pytest.raises(DeliveryError):
            lifecycle.send_to_customer(db, storage, mailer, as_principal(partner), report.id)
        db.refresh(report)
        assert report.is_new is True

    def test_missing_blob_is_storage_error(self, db, storage, mailer, ready, as_principal):
        _, partner, report = ready
        storage.blobs.clear()
        with pytest.raises(StorageError):
            lifecycle.send_to_customer(db, storage, mailer, as_principal(partner), report.id)
        assert mailer.sent == []

    def test_send_requires_files(self, db, seed, storage, mailer, as_principal):
        partner = seed.partner(seed.admin())
        report = seed.report(partner, customer=seed.customer(partner))
        with pytest.raises(ValidationError):
            lifecycle.send_to_customer(db, storage, mailer, as_principal(partner), report.id)
        assert mailer.sent == []

    def test_admin_sends_to_partner_without_touching_flag(self, db, storage, mailer, ready, as_principal):
        admin, partner, report = ready
        sent = lifecycle.send_to_partner(db, storage, mailer, as_principal(admin), report.id)
        assert sent.is_new is True
        assert mailer.sent[0]["to"] == partner.email
        assert len(mailer.sent[0]["attachments"]) == 1
