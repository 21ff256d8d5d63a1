from datetime import date
from unittest import mock

from django.contrib.auth import get_user_model
from django.test import TestCase
from rest_framework.exceptions import ValidationError
from rest_framework.test import APIClient

from audits.models import AuditItem, AuditRecord
from audits.services import (
    apply_adjustments,
    approve_audit,
    complete_audit,
    compute_audit_stats,
    create_audit,
    record_count,
)
from common.exceptions import InvalidState
from inventory.ledger import apply_transaction, lock_inventories, replay_quantity
from inventory.models import Inventory, Transaction
from inventory.services import create_part


class AuditServiceTests(TestCase):
    def setUp(self):
        self.parts = []
        for index in range(10):
            part = create_part(code=f"P-{index:03d}", name=f"Part {index}")
            apply_transaction(part, "INBOUND", 10 + index)
            self.parts.append(part)
        self.audit = create_audit(audit_type="MONTHLY", audit_date=date(2025, 1, 31), performed_by="lee")

    def _item(self, index):
        return self.audit.items.get(part=self.parts[index])

    def _assert_stats(self, total, matched, mismatched):
        self.audit.refresh_from_db()
        self.assertEqual(
            (self.audit.total_items, self.audit.matched_items, self.audit.discrepancy_items),
            (total, matched, mismatched),
        )
        fresh = compute_audit_stats(self.audit)
        self.assertEqual((fresh.total_items, fresh.matched_items, fresh.discrepancy_items), (total, matched, mismatched))

    def test_create_snapshots_every_active_part(self):
        self.assertEqual(self.audit.code, "AUD250131-0001")
        self.assertEqual(self.audit.scope, AuditRecord.Scope.ALL)
        self.assertEqual(self.audit.total_items, 10)
        self.assertEqual(self._item(3).system_qty, 13)
        self.assertIsNone(self._item(3).counted_qty)

    def test_partial_scope_limits_items(self):
        audit = create_audit(audit_type="SPOT", audit_date=date(2025, 1, 31), part_ids=[self.parts[0].id, self.parts[1].id])

        self.assertEqual(audit.code, "AUD250131-0002")
        self.assertEqual(audit.scope, AuditRecord.Scope.PARTIAL)
        self.assertEqual(audit.items.count(), 2)

    def test_unknown_part_ids_are_rejected(self):
        with self.assertRaises(ValidationError):
            create_audit(audit_type="SPOT", audit_date=date(2025, 1, 31), part_ids=["00000000-0000-0000-0000-000000000000"])

    def test_aggregates_follow_every_count(self):
        for index in range(4):
            record_count(self._item(index), 10 + index)
        self._assert_stats(10, 4, 0)

        record_count(self._item(4), 99)
        record_count(self._item(5), 0)
        self._assert_stats(10, 4, 2)
        self.assertEqual(self._item(5).discrepancy, -15)

        record_count(self._item(4), 14)
        self._assert_stats(10, 5, 1)

    def test_count_must_be_whole_and_non_negative(self):
        for value in (-1, "abc", None, 1.5, True):
            with self.subTest(value=value):
                with self.assertRaises(ValidationError):
                    record_count(self._item(0), value)
        self.assertIsNone(self._item(0).counted_qty)

    def test_counts_are_rejected_after_completion(self):
        complete_audit(self.audit)

        with self.assertRaises(InvalidState):
            record_count(self._item(0), 1)

    def test_lifecycle_order_is_enforced(self):
        with self.assertRaises(InvalidState):
            approve_audit(self.audit)
        with self.assertRaises(InvalidState):
            apply_adjustments(self.audit)

        complete_audit(self.audit)
        with self.assertRaises(InvalidState):
            complete_audit(self.audit)

        audit = approve_audit(self.audit, approved_by="park")
        self.assertEqual(audit.status, AuditRecord.Status.APPROVED)
        self.assertEqual(audit.approved_by, "park")
        self.assertIsNotNone(audit.approved_at)

    def test_adjustments_set_counted_quantity_once(self):
        record_count(self._item(0), 10)
        record_count(self._item(1), 7)
        record_count(self._item(2), 20)
        complete_audit(self.audit)
        approve_audit(self.audit)

        entries = apply_adjustments(self.audit, performed_by="park")

        self.assertEqual(len(entries), 2)
        self.assertTrue(all(entry.transaction_type == Transaction.Type.ADJUSTMENT for entry in entries))
        self.assertEqual({entry.reference_id for entry in entries}, {self.audit.code})
        self.assertEqual(Inventory.objects.get(part=self.parts[1]).current_qty, 7)
        self.assertEqual(Inventory.objects.get(part=self.parts[2]).current_qty, 20)
        self.assertEqual(replay_quantity(self.parts[1]), 7)
        self.assertIsNotNone(AuditItem.objects.get(audit=self.audit, part=self.parts[1]).adjustment_transaction_id)

        self.assertEqual(apply_adjustments(self.audit), [])
        self.assertEqual(Transaction.objects.filter(transaction_type="ADJUSTMENT").count(), 2)

    def test_adjustments_lock_every_inventory_row_before_posting(self):
        record_count(self._item(1), 7)
        record_count(self._item(2), 20)
        complete_audit(self.audit)
        approve_audit(self.audit)
        events = []

        def lock(part_ids):
            events.append(("lock", sorted(str(part_id) for part_id in part_ids)))
            return lock_inventories(part_ids)

        def post(part, *args, **kwargs):
            events.append(("post", str(part.pk)))
            return apply_transaction(part, *args, **kwargs)

        with mock.patch("audits.services.lock_inventories", side_effect=lock), mock.patch(
            "audits.services.apply_transaction", side_effect=post
        ):
            apply_adjustments(self.audit)

        expected = sorted(str(part.pk) for part in self.parts[1:3])
        self.assertEqual(events[0], ("lock", expected))
        self.assertEqual(sorted(part_id for _, part_id in events[1:]), expected)


class AuditApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        user_model = get_user_model()
        self.manager = user_model.objects.create_user(
            username="manager",
            password="pass1234",
            role=user_model.Role.MANAGER,
        )
        self.operator = user_model.objects.create_user(
            username="operator",
            password="pass1234",
            role=user_model.Role.OPERATOR,
        )
        self.part = create_part(code="P-AUD", name="Counted")
        apply_transaction(self.part, "INBOUND", 12)

    def test_count_and_approve_over_http(self):
        self.client.force_authenticate(user=self.manager)
        response = self.client.post("/api/v1/audit/", {"audit_type": "SPOT", "audit_date": "2025-01-31"}, format="json")
        self.assertEqual(response.status_code, 201)
        audit = response.json()
        self.assertEqual(audit["performed_by"], "manager")
        item_id = audit["items"][0]["id"]

        self.client.force_authenticate(user=self.operator)
        response = self.client.put(f"/api/v1/audit-items/{item_id}/", {"counted_qty": 9, "notes": "shelf 2"}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["discrepancy"], -3)

        response = self.client.post(f"/api/v1/audit/{audit['id']}/complete/", {}, format="json")
        self.assertEqual(response.status_code, 403)

        self.client.force_authenticate(user=self.manager)
        response = self.client.post(f"/api/v1/audit/{audit['id']}/complete/", {}, format="json")
        self.assertEqual(response.json()["discrepancy_items"], 1)
        self.client.post(f"/api/v1/audit/{audit['id']}/approve/", {}, format="json")
        response = self.client.post(f"/api/v1/audit/{audit['id']}/apply-adjustments/", {}, format="json")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.json()["transactions"]), 1)
        self.assertEqual(Inventory.objects.get(part=self.part).current_qty, 9)

    def test_negative_count_returns_400(self):
        audit = create_audit(audit_type="SPOT", audit_date=date(2025, 1, 31))
        item = audit.items.get()
        self.client.force_authenticate(user=self.operator)

        response = self.client.patch(f"/api/v1/audit-items/{item.id}/", {"counted_qty": -2}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("counted_qty", response.json()["errors"])

    def test_count_on_completed_audit_returns_400(self):
        audit = create_audit(audit_type="SPOT", audit_date=date(2025, 1, 31))
        complete_audit(audit)
        self.client.force_authenticate(user=self.operator)

        response = self.client.patch(f"/api/v1/audit-items/{audit.items.get().id}/", {"counted_qty": 2}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "invalid_state")

    def test_missing_item_returns_404(self):
        self.client.force_authenticate(user=self.operator)

        response = self.client.patch(
            "/api/v1/audit-items/00000000-0000-0000-0000-000000000000/",
            {"counted_qty": 2},
            format="json",
        )

        self.assertEqual(response.status_code, 404)
