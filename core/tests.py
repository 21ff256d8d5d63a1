from io import StringIO

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase
from rest_framework.test import APIClient

from audits.models import AuditRecord
from core.models import ActivityLog, EventOutbox
from inventory.ledger import apply_transaction
from inventory.models import Inventory, Part, Supplier
from inventory.services import create_part


class RolePermissionTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.viewer = self.user_model.objects.create_user(username="viewer", password="pass1234")
        self.manager = self.user_model.objects.create_user(
            username="manager",
            password="pass1234",
            role=self.user_model.Role.MANAGER,
        )
        self.admin = self.user_model.objects.create_user(
            username="admin",
            password="pass1234",
            role=self.user_model.Role.ADMIN,
        )

    def test_new_users_default_to_viewer(self):
        self.assertEqual(self.viewer.role, self.user_model.Role.VIEWER)

    def test_anonymous_requests_are_rejected_with_envelope(self):
        response = self.client.get("/api/v1/inventory/")

        self.assertEqual(response.status_code, 401)
        payload = response.json()
        self.assertEqual(payload["code"], "not_authenticated")
        self.assertEqual(payload["status"], 401)

    def test_viewer_cannot_create_supplier_and_denial_is_logged(self):
        self.client.force_authenticate(user=self.viewer)

        with self.assertLogs("security.authorization", level="WARNING") as cm:
            response = self.client.post("/api/v1/suppliers/", {"code": "S-1", "name": "Blocked"}, format="json")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "permission_denied")
        self.assertIn("capability=master.manage", cm.output[0])
        self.assertFalse(Supplier.objects.exists())

    def test_manager_create_writes_activity_log_and_event(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.post("/api/v1/suppliers/", {"code": "S-1", "name": "Acme"}, format="json")

        self.assertEqual(response.status_code, 201)
        log = ActivityLog.objects.get(action="supplier.create")
        self.assertEqual(log.actor, self.manager)
        self.assertEqual(log.after_snapshot["code"], "S-1")
        event = EventOutbox.objects.get(entity="supplier", op="upsert")
        self.assertEqual(event.payload["payload"]["name"], "Acme")

    def test_activity_logs_are_admin_only_and_read_only(self):
        ActivityLog.objects.create(action="part.create", entity="part")

        self.client.force_authenticate(user=self.manager)
        self.assertEqual(self.client.get("/api/v1/admin/activity-logs/").status_code, 403)

        self.client.force_authenticate(user=self.admin)
        response = self.client.get("/api/v1/admin/activity-logs/", {"entity": "part"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["count"], 1)
        self.assertEqual(self.client.post("/api/v1/admin/activity-logs/", {}, format="json").status_code, 405)

    def test_token_accepts_email_as_username(self):
        self.manager.email = "Manager@Example.com"
        self.manager.save()

        response = self.client.post(
            "/api/v1/token/",
            {"username": "manager@example.com", "password": "pass1234"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertIn("access", response.json())

    def test_me_returns_role(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.get("/api/v1/me/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["role"], "manager")


class HealthCheckTests(TestCase):
    def test_healthz_is_public_and_echoes_request_id(self):
        response = self.client.get("/api/v1/healthz/", HTTP_X_REQUEST_ID="req-123")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ok")
        self.assertEqual(response["X-Request-ID"], "req-123")

    def test_readyz_reports_database(self):
        response = self.client.get("/readyz/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ready")


class ConsistencyCommandTests(TestCase):
    def setUp(self):
        self.part = create_part(code="P-CHK", name="Checked part")
        apply_transaction(self.part, "INBOUND", 30)
        apply_transaction(self.part, "OUTBOUND", 5)

    def test_consistent_ledger_passes(self):
        out = StringIO()

        call_command("check_inventory_consistency", stdout=out)

        self.assertIn("consistent", out.getvalue())

    def test_drifted_inventory_row_is_reported(self):
        Inventory.objects.filter(part=self.part).update(current_qty=99)
        out = StringIO()

        with self.assertRaises(CommandError):
            call_command("check_inventory_consistency", stdout=out)

        self.assertIn("P-CHK", out.getvalue())
        self.assertIn("ledger=25", out.getvalue())

    def test_drifted_audit_aggregates_are_reported(self):
        AuditRecord.objects.create(code="AUD-X", audit_date="2025-01-31", audit_type="MONTHLY", total_items=3)
        out = StringIO()

        with self.assertRaises(CommandError):
            call_command("check_inventory_consistency", stdout=out)

        self.assertIn("AUD-X", out.getvalue())


class SeedCommandTests(TestCase):
    def test_seed_creates_stock_through_ledger(self):
        call_command("seed_demo_data", stdout=StringIO())

        self.assertTrue(get_user_model().objects.filter(username="operator", role="operator").exists())
        bolt = Part.objects.get(name="Hex bolt M8")
        self.assertEqual(bolt.inventory.current_qty, 200)
        self.assertEqual(bolt.transactions.count(), 1)

        call_command("seed_demo_data", stdout=StringIO())
        self.assertEqual(Part.objects.filter(name="Hex bolt M8").count(), 1)
