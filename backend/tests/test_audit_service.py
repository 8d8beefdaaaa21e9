import unittest
from datetime import timedelta

from portal_auth import create_app
from portal_auth.extensions import db
from portal_auth.models import Account, AccountKind, AuditAction, AuditLogEntry, AuditLogImmutableError
from portal_auth.services import audit_service, credential_service
from portal_auth.time_utils import utcnow


class AuditServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = create_app({
            "SECRET_KEY": "test",
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "SQLALCHEMY_TRACK_MODIFICATIONS": False,
            "TESTING": True,
        })
        cls.ctx = cls.app.app_context()
        cls.ctx.push()
        db.create_all()

    @classmethod
    def tearDownClass(cls):
        db.session.remove()
        db.drop_all()
        cls.ctx.pop()

    def setUp(self):
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        self.admin = credential_service.create_account("admin@portal.local", "Password123!", AccountKind.ADMIN)

    def test_log_joins_caller_transaction(self):
        audit_service.log("session", 1, AuditAction.CREATE, new_values={"event": "login"})
        db.session.rollback()
        self.assertEqual(audit_service.find_by_entity("session", 1), [])

        audit_service.log("session", 1, AuditAction.CREATE, new_values={"event": "login"}, commit=True)
        db.session.rollback()
        self.assertEqual(len(audit_service.find_by_entity("session", 1)), 1)

    def test_entries_cannot_be_updated(self):
        entry = audit_service.log("session", 1, AuditAction.CREATE, commit=True)

        entry.new_values = {"tampered": True}
        with self.assertRaises(AuditLogImmutableError):
            db.session.commit()
        db.session.rollback()

    def test_entries_cannot_be_deleted(self):
        entry = audit_service.log("session", 1, AuditAction.CREATE, commit=True)

        db.session.delete(entry)
        with self.assertRaises(AuditLogImmutableError):
            db.session.commit()
        db.session.rollback()
        self.assertEqual(db.session.query(AuditLogEntry).filter_by(entity_type="session").count(), 1)

    def test_find_by_entity_newest_first(self):
        first = audit_service.log("device_binding", 5, AuditAction.CREATE)
        second = audit_service.log("device_binding", 5, AuditAction.UPDATE)
        audit_service.log("device_binding", 6, AuditAction.CREATE, commit=True)

        rows = audit_service.find_by_entity("device_binding", 5)
        self.assertEqual([row.id for row in rows], [second.id, first.id])

    def test_find_all_filters_and_paginates(self):
        for i in range(5):
            audit_service.log("session", i, AuditAction.REJECT, performed_by=self.admin.id)
        audit_service.log("session", 99, AuditAction.CREATE, commit=True)

        rows, total = audit_service.find_all(audit_service.AuditLogQuery(
            entity_type="session", action=AuditAction.REJECT, limit=2, offset=1,
        ))

        self.assertEqual(total, 5)
        self.assertEqual([row.entity_id for row in rows], [3, 2])

    def test_user_activity_date_range(self):
        audit_service.log("account", self.admin.id, AuditAction.UPDATE, performed_by=self.admin.id, commit=True)

        now = utcnow()
        recent = audit_service.get_user_activity(
            self.admin.id, from_date=now - timedelta(minutes=5), to_date=now + timedelta(minutes=5)
        )
        old = audit_service.get_user_activity(
            self.admin.id, from_date=now - timedelta(days=10), to_date=now - timedelta(days=9)
        )

        self.assertEqual(len(recent), 1)
        self.assertEqual(old, [])

    def test_to_dict_serializes_action_and_timestamp(self):
        entry = audit_service.log("account", None, AuditAction.REJECT, new_values={"reason": "x"}, commit=True)
        data = entry.to_dict()

        self.assertEqual(data["action"], "reject")
        self.assertIsNone(data["entity_id"])
        self.assertTrue(data["timestamp"].endswith("Z"))

    def test_account_creation_is_audited(self):
        entry = audit_service.find_by_entity("account", self.admin.id)[0]
        self.assertEqual(entry.action, AuditAction.CREATE)
        self.assertEqual(entry.new_values["kind"], "admin")
        self.assertIsNotNone(db.session.get(Account, self.admin.id))


if __name__ == "__main__":
    unittest.main()
