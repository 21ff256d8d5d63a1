import threading
from datetime import date
from decimal import Decimal
from unittest import mock

from django.contrib.auth import get_user_model
from django.db import connection, connections, transaction
from django.test import TestCase, TransactionTestCase, override_settings
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework.test import APIClient

from common.exceptions import Conflict, InsufficientStock
from core.models import EventOutbox
from inventory import ledger
from inventory.codes import allocate_code, date_scope, highest_existing_suffix, validate_scope
from inventory.ledger import (
    MAX_QUANTITY,
    Reference,
    apply_transaction,
    inventory_snapshot,
    lock_inventories,
    normalize_type,
    release,
    replay_quantity,
    reserve,
)
from inventory.models import Inventory, Part, Supplier, Transaction
from inventory.services import create_part, retire_part
from orders.models import Order


class LedgerTests(TestCase):
    def setUp(self):
        self.part = create_part(code="P-100", name="Bolt", safety_stock=10)

    def _stock(self, quantity):
        return apply_transaction(self.part, Transaction.Type.INBOUND, quantity)

    def test_inbound_adds_to_on_hand(self):
        self._stock(100)

        entry = apply_transaction(self.part, "INBOUND", 20, reference=Reference.order("PO2501-0001"))

        self.assertEqual(entry.before_qty, 100)
        self.assertEqual(entry.after_qty, 120)
        self.assertEqual(entry.reference_type, Transaction.ReferenceType.ORDER)
        self.assertEqual(entry.reference_id, "PO2501-0001")
        inventory = Inventory.objects.get(part=self.part)
        self.assertEqual(inventory.current_qty, 120)
        self.assertIsNotNone(inventory.last_inbound_at)

    def test_outbound_beyond_stock_is_rejected_without_effects(self):
        self._stock(5)

        with self.assertRaises(InsufficientStock) as ctx:
            apply_transaction(self.part, "OUTBOUND", 6)

        self.assertEqual(ctx.exception.available, 5)
        self.assertEqual(Inventory.objects.get(part=self.part).current_qty, 5)
        self.assertEqual(Transaction.objects.filter(part=self.part).count(), 1)

    def test_outbound_to_exactly_zero_is_allowed(self):
        self._stock(5)

        entry = apply_transaction(self.part, "OUTBOUND", 5)

        self.assertEqual(entry.after_qty, 0)
        self.assertIsNotNone(Inventory.objects.get(part=self.part).last_outbound_at)

    def test_adjustment_sets_absolute_quantity(self):
        self._stock(40)

        entry = apply_transaction(self.part, "ADJUSTMENT", 33)

        self.assertEqual(entry.quantity, 33)
        self.assertEqual(entry.before_qty, 40)
        self.assertEqual(entry.after_qty, 33)

    def test_adjustment_to_zero_is_allowed_but_negative_is_not(self):
        self._stock(3)

        self.assertEqual(apply_transaction(self.part, "ADJUSTMENT", 0).after_qty, 0)
        with self.assertRaises(ValidationError):
            apply_transaction(self.part, "ADJUSTMENT", -1)

    def test_transfer_keeps_on_hand(self):
        self._stock(8)

        entry = apply_transaction(self.part, "TRANSFER", 3)

        self.assertEqual((entry.before_qty, entry.after_qty), (8, 8))

    def test_quantity_must_be_positive_whole_number(self):
        for quantity in (0, -4, 1.5, "abc", True):
            with self.subTest(quantity=quantity):
                with self.assertRaises(ValidationError):
                    apply_transaction(self.part, "INBOUND", quantity)
        self.assertFalse(Transaction.objects.exists())

    def test_unknown_type_is_rejected(self):
        with self.assertRaises(ValidationError):
            apply_transaction(self.part, "SHRINK", 1)

    def test_quantity_beyond_column_range_is_rejected(self):
        for quantity in (MAX_QUANTITY + 1, 10**20, float("inf")):
            with self.subTest(quantity=quantity):
                with self.assertRaises(ValidationError):
                    apply_transaction(self.part, "INBOUND", quantity)
        self.assertFalse(Transaction.objects.exists())

    def test_on_hand_cannot_grow_past_column_range(self):
        self._stock(MAX_QUANTITY - 1)

        with self.assertRaises(ValidationError):
            apply_transaction(self.part, "INBOUND", 2)

        self.assertEqual(Inventory.objects.get(part=self.part).current_qty, MAX_QUANTITY - 1)
        self.assertEqual(Transaction.objects.filter(part=self.part).count(), 1)

    def _stale_lock(self, stale, times):
        real_lock = ledger._lock_inventory
        seen = []

        def lock(part_id):
            locked = real_lock(part_id)
            seen.append(locked.current_qty)
            return stale if len(seen) <= times else locked

        return lock, seen

    def test_stale_version_is_retried_from_fresh_quantity(self):
        self._stock(10)
        stale = Inventory.objects.select_related("part").get(part=self.part)
        self._stock(5)
        lock, seen = self._stale_lock(stale, times=1)

        with mock.patch("inventory.ledger._lock_inventory", side_effect=lock):
            entry = apply_transaction(self.part, "OUTBOUND", 3)

        self.assertEqual(len(seen), 2)
        self.assertEqual((entry.before_qty, entry.after_qty), (15, 12))
        self.assertEqual(Inventory.objects.get(part=self.part).current_qty, 12)
        self.assertEqual(replay_quantity(self.part), 12)

    @override_settings(INVENTORY_LEDGER_MAX_RETRIES=2)
    def test_version_conflict_gives_up_after_retries(self):
        self._stock(10)
        stale = Inventory.objects.select_related("part").get(part=self.part)
        self._stock(5)
        lock, seen = self._stale_lock(stale, times=99)

        with mock.patch("inventory.ledger._lock_inventory", side_effect=lock):
            with self.assertRaises(Conflict) as ctx:
                apply_transaction(self.part, "OUTBOUND", 3)

        self.assertEqual(ctx.exception.get_codes(), "concurrent_update")
        self.assertEqual(len(seen), 2)
        self.assertEqual(Inventory.objects.get(part=self.part).current_qty, 15)
        self.assertEqual(Transaction.objects.filter(part=self.part).count(), 2)

    def test_lock_inventories_orders_by_part(self):
        other = create_part(code="P-200", name="Nut")

        rows = lock_inventories([other, self.part.pk])

        self.assertEqual([row.part_id for row in rows], sorted([self.part.pk, other.pk]))

    def test_type_aliases(self):
        self.assertEqual(normalize_type("in"), Transaction.Type.INBOUND)
        self.assertEqual(normalize_type("출고"), Transaction.Type.OUTBOUND)
        self.assertEqual(normalize_type(" adj "), Transaction.Type.ADJUSTMENT)

    def test_missing_inventory_row_is_not_found(self):
        orphan = Part.objects.create(code="P-ORPHAN", name="No inventory")

        with self.assertRaises(NotFound):
            apply_transaction(orphan, "INBOUND", 1)

    def test_inactive_part_is_rejected(self):
        self.part.is_active = False
        self.part.save()

        with self.assertRaises(Conflict) as ctx:
            apply_transaction(self.part, "INBOUND", 1)
        self.assertEqual(ctx.exception.get_codes(), "part_inactive")

    def test_replayed_history_matches_inventory(self):
        self._stock(50)
        apply_transaction(self.part, "OUTBOUND", 12)
        apply_transaction(self.part, "TRANSFER", 4)
        apply_transaction(self.part, "ADJUSTMENT", 30)
        apply_transaction(self.part, "INBOUND", 7)
        with self.assertRaises(InsufficientStock):
            apply_transaction(self.part, "OUTBOUND", 100)

        self.assertEqual(replay_quantity(self.part), 37)
        self.assertEqual(Inventory.objects.get(part=self.part).current_qty, 37)

    def test_each_entry_chains_from_previous(self):
        self._stock(10)
        apply_transaction(self.part, "OUTBOUND", 4)
        apply_transaction(self.part, "INBOUND", 1)

        entries = list(Transaction.objects.filter(part=self.part).order_by("transaction_date", "created_at"))
        for previous, current in zip(entries, entries[1:]):
            self.assertEqual(current.before_qty, previous.after_qty)

    def test_transactions_are_immutable(self):
        entry = self._stock(1)

        entry.notes = "edited"
        with self.assertRaises(ValueError):
            entry.save()
        with self.assertRaises(ValueError):
            entry.delete()

    def test_transaction_codes_use_type_and_day(self):
        entry = self._stock(1)

        self.assertRegex(entry.code, r"^IN\d{6}-0001$")
        self.assertRegex(apply_transaction(self.part, "OUTBOUND", 1).code, r"^OUT\d{6}-0001$")

    def test_low_stock_event_is_queued(self):
        self._stock(12)

        apply_transaction(self.part, "OUTBOUND", 3)

        event = EventOutbox.objects.get(entity="inventory", op="low_stock")
        self.assertEqual(event.payload["payload"]["current_qty"], 9)

    def test_reservation_limits_available_quantity(self):
        self._stock(10)

        reserve(self.part, 4)
        snapshot = inventory_snapshot(self.part)
        self.assertEqual((snapshot.current_qty, snapshot.reserved_qty, snapshot.available_qty), (10, 4, 6))

        with self.assertRaises(InsufficientStock):
            reserve(self.part, 7)
        release(self.part, 4)
        self.assertEqual(inventory_snapshot(self.part).available_qty, 10)

    def test_available_quantity_shows_oversubscription(self):
        self._stock(10)
        reserve(self.part, 8)

        apply_transaction(self.part, "OUTBOUND", 5)

        self.assertEqual(inventory_snapshot(self.part).available_qty, -3)
        self.assertEqual(Inventory.objects.get(part=self.part).available_qty, -3)
        with self.assertRaises(InsufficientStock):
            reserve(self.part, 1)


class ReferenceTests(TestCase):
    def test_parse_defaults_to_manual(self):
        self.assertEqual(Reference.parse(None, None), Reference.manual())
        self.assertEqual(Reference.parse("", ""), Reference.manual())

    def test_parse_normalizes_kind(self):
        reference = Reference.parse("order", " PO2501-0001 ")

        self.assertEqual(reference.kind, Transaction.ReferenceType.ORDER)
        self.assertEqual(reference.identifier, "PO2501-0001")

    def test_document_reference_requires_identifier(self):
        with self.assertRaises(ValidationError):
            Reference.parse("ORDER", "")

    def test_manual_reference_rejects_identifier(self):
        with self.assertRaises(ValidationError):
            Reference.parse("MANUAL", "X-1")

    def test_unknown_kind_is_rejected(self):
        with self.assertRaises(ValidationError):
            Reference.parse("INVOICE", "INV-1")


class CodeAllocatorTests(TestCase):
    def setUp(self):
        self.supplier = Supplier.objects.create(code="SUP-1", name="Acme")

    def _order(self, code):
        return Order.objects.create(code=code, supplier=self.supplier, order_date=date(2025, 1, 10))

    def test_first_code_in_scope(self):
        self.assertEqual(allocate_code("PO2501", model=Order), "PO2501-0001")

    def test_next_code_follows_highest_existing(self):
        for suffix in range(1, 8):
            self._order(f"PO2501-{suffix:04d}")

        self.assertEqual(allocate_code("PO2501", model=Order), "PO2501-0008")

    def test_codes_are_never_reissued(self):
        first = allocate_code("PO2501", model=Order)
        second = allocate_code("PO2501", model=Order)

        self.assertEqual((first, second), ("PO2501-0001", "PO2501-0002"))

    def test_interleaved_allocations_get_distinct_codes(self):
        first = allocate_code("PO2501", model=Order)
        second = allocate_code("PO2501", model=Order)
        self._order(second)
        self._order(first)

        self.assertEqual((first, second), ("PO2501-0001", "PO2501-0002"))
        self.assertEqual(allocate_code("PO2501", model=Order), "PO2501-0003")

    def test_rolled_back_allocation_is_released(self):
        with self.assertRaises(RuntimeError):
            with transaction.atomic():
                allocate_code("PO2501", model=Order)
                raise RuntimeError("caller failed")

        self.assertEqual(allocate_code("PO2501", model=Order), "PO2501-0001")

    def test_imported_codes_raise_the_floor(self):
        allocate_code("PO2501", model=Order)
        self._order("PO2501-0042")

        self.assertEqual(allocate_code("PO2501", model=Order), "PO2501-0043")

    def test_suffix_is_compared_numerically(self):
        self._order("PO2501-99")
        self._order("PO2501-0100")

        self.assertEqual(highest_existing_suffix("PO2501", Order), 100)

    def test_other_scopes_do_not_count(self):
        self._order("PO2412-0009")
        self._order("PO25010-0005")

        self.assertEqual(allocate_code("PO2501", model=Order), "PO2501-0001")

    def test_malformed_prefix_is_rejected(self):
        for scope in ("", "po2501", "PO-2501", "2501", "PO 25"):
            with self.subTest(scope=scope):
                with self.assertRaises(ValidationError):
                    validate_scope(scope)

    def test_date_scope(self):
        self.assertEqual(date_scope("PO", when=date(2025, 1, 15)), "PO2501")
        self.assertEqual(date_scope("AUD", "%y%m%d", date(2025, 1, 15)), "AUD250115")

    @override_settings(CODE_SUFFIX_WIDTH=6)
    def test_suffix_width_setting(self):
        self.assertEqual(allocate_code("PRD", model=Order), "PRD-000001")


class PartServiceTests(TestCase):
    def test_create_part_allocates_code_and_inventory(self):
        part = create_part(name="Washer")

        self.assertRegex(part.code, r"^P\d{4}-0001$")
        self.assertEqual(Inventory.objects.get(part=part).current_qty, 0)

    def test_retire_part_without_history_deletes(self):
        part = create_part(code="P-DEL", name="Unused")

        self.assertTrue(retire_part(part))
        self.assertFalse(Part.objects.filter(code="P-DEL").exists())

    def test_retire_part_with_history_deactivates(self):
        part = create_part(code="P-KEEP", name="Used")
        apply_transaction(part, "INBOUND", 2)

        self.assertFalse(retire_part(part))
        part.refresh_from_db()
        self.assertFalse(part.is_active)
        self.assertEqual(part.transactions.count(), 1)


class InventoryApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        user_model = get_user_model()
        self.operator = user_model.objects.create_user(
            username="operator",
            password="pass1234",
            role=user_model.Role.OPERATOR,
        )
        self.viewer = user_model.objects.create_user(username="viewer", password="pass1234")
        self.manager = user_model.objects.create_user(
            username="manager",
            password="pass1234",
            role=user_model.Role.MANAGER,
        )
        self.part = create_part(code="P-API", name="Gasket", unit_price=Decimal("2.50"), safety_stock=5)
        self.client.force_authenticate(user=self.operator)

    def _post(self, payload):
        return self.client.post("/api/v1/transactions/", payload, format="json")

    def test_create_transaction(self):
        response = self._post(
            {
                "part_id": str(self.part.id),
                "transaction_type": "INBOUND",
                "quantity": 20,
                "reference_type": "ORDER",
                "reference_id": "PO2501-0001",
                "reason": "receipt",
            }
        )

        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertEqual(payload["after_qty"], 20)
        self.assertEqual(payload["performed_by"], "operator")
        self.assertEqual(payload["part_code"], "P-API")

    def test_unknown_part_returns_404_envelope(self):
        response = self._post({"part_id": "00000000-0000-0000-0000-000000000000", "transaction_type": "IN", "quantity": 1})

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "not_found")

    def test_invalid_quantity_returns_400(self):
        response = self._post({"part_id": str(self.part.id), "transaction_type": "OUTBOUND", "quantity": 0})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("quantity", response.json()["errors"])

    def test_oversized_quantity_returns_400(self):
        response = self._post({"part_id": str(self.part.id), "transaction_type": "INBOUND", "quantity": 10**20})

        self.assertEqual(response.status_code, 400)
        self.assertIn("quantity", response.json()["errors"])
        self.assertFalse(Transaction.objects.exists())

    def test_invalid_reference_returns_400(self):
        response = self._post(
            {"part_id": str(self.part.id), "transaction_type": "INBOUND", "quantity": 1, "reference_type": "ORDER"}
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("reference_id", response.json()["errors"])

    def test_insufficient_stock_returns_409(self):
        apply_transaction(self.part, "INBOUND", 2)

        response = self._post({"part_id": str(self.part.id), "transaction_type": "OUTBOUND", "quantity": 3})

        self.assertEqual(response.status_code, 409)
        payload = response.json()
        self.assertEqual(payload["code"], "insufficient_stock")
        self.assertIn("available 2", payload["message"])
        self.assertEqual(Inventory.objects.get(part=self.part).current_qty, 2)

    def test_viewer_cannot_move_stock(self):
        self.client.force_authenticate(user=self.viewer)

        response = self._post({"part_id": str(self.part.id), "transaction_type": "INBOUND", "quantity": 1})

        self.assertEqual(response.status_code, 403)

    def test_transactions_cannot_be_edited_over_http(self):
        entry = apply_transaction(self.part, "INBOUND", 2)

        response = self.client.patch(f"/api/v1/transactions/{entry.id}/", {"quantity": 9}, format="json")

        self.assertEqual(response.status_code, 405)

    def test_inventory_list_and_low_stock(self):
        apply_transaction(self.part, "INBOUND", 3)
        other = create_part(code="P-FULL", name="Plenty", safety_stock=1)
        apply_transaction(other, "INBOUND", 50)

        listing = self.client.get("/api/v1/inventory/")
        low = self.client.get("/api/v1/inventory/low-stock/")

        self.assertEqual(listing.status_code, 200)
        self.assertEqual(listing.json()["count"], 2)
        self.assertEqual([row["part_code"] for row in low.json()], ["P-API"])
        self.assertTrue(low.json()[0]["below_safety_stock"])

    def test_part_history_endpoint(self):
        apply_transaction(self.part, "INBOUND", 3)
        apply_transaction(self.part, "OUTBOUND", 1)

        response = self.client.get(f"/api/v1/parts/{self.part.id}/transactions/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["count"], 2)

    def test_manager_creates_part_with_generated_code(self):
        self.client.force_authenticate(user=self.manager)

        response = self.client.post("/api/v1/parts/", {"name": "Spring", "unit_price": "1.10"}, format="json")

        self.assertEqual(response.status_code, 201)
        self.assertRegex(response.json()["code"], r"^P\d{4}-\d{4}$")
        self.assertEqual(response.json()["inventory"]["current_qty"], 0)

    def test_delete_part_with_history_soft_deletes(self):
        apply_transaction(self.part, "INBOUND", 1)
        self.client.force_authenticate(user=self.manager)

        response = self.client.delete(f"/api/v1/parts/{self.part.id}/")

        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["is_active"])
        self.assertTrue(Part.objects.filter(pk=self.part.pk).exists())

    def test_part_code_with_history_cannot_change(self):
        apply_transaction(self.part, "INBOUND", 1)
        self.client.force_authenticate(user=self.manager)

        response = self.client.patch(f"/api/v1/parts/{self.part.id}/", {"code": "P-NEW"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("code", response.json()["errors"])


class ConcurrentLedgerTests(TransactionTestCase):
    """Real parallel writers; row locks are only meaningful on PostgreSQL."""

    def setUp(self):
        if connection.vendor != "postgresql":
            self.skipTest("row level locking requires PostgreSQL")
        self.part = create_part(code="P-RACE", name="Contended")
        apply_transaction(self.part, "INBOUND", 10)

    def _run_outbound(self, quantity, results):
        try:
            apply_transaction(self.part.pk, "OUTBOUND", quantity)
            results.append("ok")
        except InsufficientStock:
            results.append("short")
        finally:
            connections.close_all()

    def _allocate(self, codes):
        try:
            with transaction.atomic():
                codes.append(allocate_code("PO2501", model=Order))
        finally:
            connections.close_all()

    def test_parallel_allocations_never_collide(self):
        codes = []
        threads = [threading.Thread(target=self._allocate, args=(codes,)) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(sorted(codes), [f"PO2501-{n:04d}" for n in range(1, 9)])

    def test_parallel_outbounds_never_oversell(self):
        results = []
        threads = [threading.Thread(target=self._run_outbound, args=(7, results)) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(sorted(results), ["ok", "short"])
        self.assertEqual(Inventory.objects.get(part=self.part).current_qty, 3)
        self.assertEqual(replay_quantity(self.part), 3)

    def test_parallel_outbounds_that_fit_both_apply(self):
        results = []
        threads = [threading.Thread(target=self._run_outbound, args=(5, results)) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(results, ["ok", "ok"])
        entries = Transaction.objects.filter(part=self.part, transaction_type="OUTBOUND").order_by("after_qty")
        self.assertEqual([(e.before_qty, e.after_qty) for e in entries], [(5, 0), (10, 5)])
        self.assertEqual(len({e.code for e in entries}), 2)
