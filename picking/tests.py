from datetime import timedelta
from decimal import Decimal
from unittest import mock

from django.contrib.auth import get_user_model
from django.test import TestCase
from django.utils import timezone
from rest_framework.exceptions import ValidationError
from rest_framework.test import APIClient

from common.exceptions import AlreadyCompleted, Conflict, InsufficientStock, InvalidState
from inventory.ledger import apply_transaction, lock_inventories, replay_quantity
from inventory.models import BomItem, Inventory, Transaction
from inventory.services import create_part, create_product
from orders.models import SalesOrder
from orders.services import create_sales_order
from picking.models import PickingItem, PickingTask
from picking.services import (
    apply_item_action,
    complete_task,
    create_task_from_sales_order,
    location_sort_key,
    update_item_fields,
)


class PickingFixtureMixin:
    def build_catalog(self, bracket_stock=10):
        self.bolt = create_part(code="P-BOLT", name="Bolt", storage_location="A-01-02")
        self.washer = create_part(code="P-WASH", name="Washer", storage_location="A-01-10")
        self.bracket = create_part(code="P-BRKT", name="Bracket", storage_location="B-02-01")
        apply_transaction(self.bolt, "INBOUND", 100)
        apply_transaction(self.washer, "INBOUND", 50)
        apply_transaction(self.bracket, "INBOUND", bracket_stock)

        self.product = create_product(name="Mounting kit")
        BomItem.objects.create(product=self.product, part=self.bracket, quantity_per_unit=Decimal("1"))
        BomItem.objects.create(product=self.product, part=self.bolt, quantity_per_unit=Decimal("4"))
        BomItem.objects.create(
            product=self.product,
            part=self.washer,
            quantity_per_unit=Decimal("2"),
            loss_rate=Decimal("1.05"),
        )
        today = timezone.localdate()
        self.sales_order = create_sales_order(
            order_date=today,
            due_date=today + timedelta(days=1),
            customer="Northwind",
            lines=[{"product": self.product, "order_qty": 5}],
        )

    def item_for(self, task, part):
        return task.items.get(part=part)


class PickingServiceTests(PickingFixtureMixin, TestCase):
    def setUp(self):
        self.build_catalog()
        self.task = create_task_from_sales_order(self.sales_order, assigned_to="kim")

    def test_task_is_built_from_bom_in_location_order(self):
        items = list(self.task.items.order_by("sequence"))

        self.assertRegex(self.task.code, r"^PICK\d{6}-0001$")
        self.assertEqual([item.part.code for item in items], ["P-BOLT", "P-WASH", "P-BRKT"])
        self.assertEqual([item.required_qty for item in items], [20, 11, 5])
        self.assertEqual([item.sequence for item in items], [1, 2, 3])
        self.assertEqual(self.task.total_items, 3)
        self.assertEqual(self.task.priority, PickingTask.Priority.HIGH)
        self.sales_order.refresh_from_db()
        self.assertEqual(self.sales_order.status, SalesOrder.Status.IN_PROGRESS)

    def test_second_task_for_same_sales_order_is_rejected(self):
        with self.assertRaises(Conflict):
            create_task_from_sales_order(self.sales_order)

    def test_sales_order_without_bom_is_rejected(self):
        bare = create_product(name="No BOM")
        sales_order = create_sales_order(order_date=timezone.localdate(), lines=[{"product": bare, "order_qty": 1}])

        with self.assertRaises(ValidationError):
            create_task_from_sales_order(sales_order)
        self.assertFalse(PickingTask.objects.filter(sales_order=sales_order).exists())

    def test_actions_move_items_and_counters(self):
        bolt_item = self.item_for(self.task, self.bolt)

        item = apply_item_action(bolt_item, "scan")
        self.assertEqual(item.status, PickingItem.Status.IN_PROGRESS)
        self.assertIsNotNone(item.scanned_at)
        self.task.refresh_from_db()
        self.assertEqual(self.task.status, PickingTask.Status.IN_PROGRESS)
        self.assertIsNotNone(self.task.started_at)

        item = apply_item_action(item, "pick")
        self.assertEqual(item.status, PickingItem.Status.PICKED)
        self.assertEqual(item.picked_qty, 20)

        apply_item_action(self.item_for(self.task, self.washer), "skip", notes="bin empty")
        self.task.refresh_from_db()
        self.assertEqual(self.task.picked_items, 2)

        reverted = apply_item_action(self.item_for(self.task, self.washer), "revert-skip")
        self.assertEqual(reverted.status, PickingItem.Status.PENDING)
        self.task.refresh_from_db()
        self.assertEqual(self.task.picked_items, 1)

    def test_item_actions_do_not_touch_stock(self):
        apply_item_action(self.item_for(self.task, self.bolt), "pick")

        self.assertEqual(Inventory.objects.get(part=self.bolt).current_qty, 100)
        self.assertFalse(Transaction.objects.filter(transaction_type="OUTBOUND").exists())

    def test_flag_records_type_and_skips(self):
        item = apply_item_action(self.item_for(self.task, self.bracket), "flag", flag_type="DAMAGED", notes="bent")

        self.assertEqual(item.status, PickingItem.Status.SKIPPED)
        self.assertEqual(item.flag_type, "DAMAGED")
        self.assertEqual(item.notes, "[FLAGGED: DAMAGED] bent")

    def test_invalid_transitions_are_rejected(self):
        item = apply_item_action(self.item_for(self.task, self.bolt), "pick")

        with self.assertRaises(InvalidState):
            apply_item_action(item, "pick")
        with self.assertRaises(InvalidState):
            apply_item_action(item, "revert-skip")
        with self.assertRaises(ValidationError):
            apply_item_action(item, "teleport")

    def test_picked_qty_cannot_exceed_required(self):
        with self.assertRaises(ValidationError):
            apply_item_action(self.item_for(self.task, self.bolt), "pick", picked_qty=21)

        item = apply_item_action(self.item_for(self.task, self.bolt), "pick", picked_qty=15)
        self.assertEqual(item.picked_qty, 15)

    def test_field_update_sets_status_and_quantity(self):
        item = update_item_fields(self.item_for(self.task, self.bolt), status="PICKED", picked_qty=12, notes="short bin")

        self.assertEqual((item.status, item.picked_qty, item.notes), ("PICKED", 12, "short bin"))

    def test_complete_posts_one_outbound_per_picked_item(self):
        apply_item_action(self.item_for(self.task, self.bolt), "pick")
        apply_item_action(self.item_for(self.task, self.washer), "pick", picked_qty=10)
        apply_item_action(self.item_for(self.task, self.bracket), "skip")

        result = complete_task(self.task, performed_by="kim")

        self.assertEqual((result.picked_count, result.skipped_count, result.transaction_count), (2, 1, 2))
        self.assertEqual(result.task.status, PickingTask.Status.COMPLETED)
        self.assertEqual(Inventory.objects.get(part=self.bolt).current_qty, 80)
        self.assertEqual(Inventory.objects.get(part=self.washer).current_qty, 40)
        self.assertEqual(Inventory.objects.get(part=self.bracket).current_qty, 10)
        outbound = Transaction.objects.filter(transaction_type="OUTBOUND")
        self.assertEqual(outbound.count(), 2)
        self.assertEqual(set(outbound.values_list("reference_id", flat=True)), {self.task.code})
        self.assertEqual(set(outbound.values_list("reference_type", flat=True)), {"PICKING"})
        self.assertIsNotNone(self.item_for(self.task, self.bolt).outbound_transaction_id)
        self.sales_order.refresh_from_db()
        self.assertEqual(self.sales_order.status, SalesOrder.Status.COMPLETED)

    def test_second_completion_is_rejected_and_posts_nothing(self):
        apply_item_action(self.item_for(self.task, self.bolt), "pick")
        complete_task(self.task)

        with self.assertRaises(AlreadyCompleted):
            complete_task(self.task)

        self.assertEqual(Transaction.objects.filter(transaction_type="OUTBOUND").count(), 1)
        self.assertEqual(Inventory.objects.get(part=self.bolt).current_qty, 80)

    def test_completion_locks_every_inventory_row_before_posting(self):
        apply_item_action(self.item_for(self.task, self.bolt), "pick")
        apply_item_action(self.item_for(self.task, self.washer), "pick")
        events = []

        def lock(part_ids):
            events.append(("lock", sorted(str(part_id) for part_id in part_ids)))
            return lock_inventories(part_ids)

        def post(part, *args, **kwargs):
            events.append(("post", str(part.pk)))
            return apply_transaction(part, *args, **kwargs)

        with mock.patch("picking.services.lock_inventories", side_effect=lock), mock.patch(
            "picking.services.apply_transaction", side_effect=post
        ):
            complete_task(self.task)

        expected = sorted(str(part.pk) for part in (self.bolt, self.washer))
        self.assertEqual(events[0], ("lock", expected))
        self.assertEqual(sorted(part_id for _, part_id in events[1:]), expected)

    def test_completed_task_items_are_frozen(self):
        complete_task(self.task)

        with self.assertRaises(InvalidState):
            apply_item_action(self.item_for(self.task, self.bolt), "pick")

    def test_location_sort_key_is_natural(self):
        locations = ["A-10-1", "", "A-2-1", "B-1-1", "A-2-01A"]

        self.assertEqual(sorted(locations, key=location_sort_key), ["A-2-1", "A-2-01A", "A-10-1", "B-1-1", ""])


class PickingShortageTests(PickingFixtureMixin, TestCase):
    def setUp(self):
        self.build_catalog(bracket_stock=3)
        self.task = create_task_from_sales_order(self.sales_order)

    def test_shortage_rolls_back_whole_completion(self):
        apply_item_action(self.item_for(self.task, self.bolt), "pick")
        apply_item_action(self.item_for(self.task, self.bracket), "pick")

        with self.assertRaises(InsufficientStock):
            complete_task(self.task)

        self.task.refresh_from_db()
        self.assertNotEqual(self.task.status, PickingTask.Status.COMPLETED)
        self.assertEqual(Inventory.objects.get(part=self.bolt).current_qty, 100)
        self.assertEqual(replay_quantity(self.bolt), 100)
        self.assertFalse(Transaction.objects.filter(transaction_type="OUTBOUND").exists())
        self.assertIsNone(self.item_for(self.task, self.bolt).outbound_transaction_id)


class PickingApiTests(PickingFixtureMixin, TestCase):
    def setUp(self):
        self.build_catalog()
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

    def test_full_picking_flow(self):
        self.client.force_authenticate(user=self.manager)
        response = self.client.post(f"/api/v1/picking-tasks/from-sales-order/{self.sales_order.id}/", {}, format="json")
        self.assertEqual(response.status_code, 201)
        task = response.json()
        self.assertEqual(len(task["items"]), 3)

        self.client.force_authenticate(user=self.operator)
        bolt_item = next(item for item in task["items"] if item["part_code"] == "P-BOLT")
        response = self.client.patch(f"/api/v1/picking-items/{bolt_item['id']}/", {"action": "pick"}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "PICKED")

        response = self.client.post(f"/api/v1/picking-tasks/{task['id']}/complete/", {}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["transaction_count"], 1)
        self.assertEqual(response.json()["task"]["status"], "COMPLETED")

        response = self.client.post(f"/api/v1/picking-tasks/{task['id']}/complete/", {}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "already_completed")

    def test_operator_cannot_create_tasks(self):
        self.client.force_authenticate(user=self.operator)

        response = self.client.post(f"/api/v1/picking-tasks/from-sales-order/{self.sales_order.id}/", {}, format="json")

        self.assertEqual(response.status_code, 403)

    def test_unknown_ids_return_404(self):
        self.client.force_authenticate(user=self.manager)
        missing = "00000000-0000-0000-0000-000000000000"

        self.assertEqual(
            self.client.post(f"/api/v1/picking-tasks/from-sales-order/{missing}/", {}, format="json").status_code,
            404,
        )
        self.assertEqual(self.client.post(f"/api/v1/picking-tasks/{missing}/complete/", {}, format="json").status_code, 404)
        self.assertEqual(self.client.patch(f"/api/v1/picking-items/{missing}/", {"action": "pick"}, format="json").status_code, 404)

    def test_flag_without_type_is_rejected(self):
        self.client.force_authenticate(user=self.manager)
        task = create_task_from_sales_order(self.sales_order)
        item = task.items.first()

        response = self.client.patch(f"/api/v1/picking-items/{item.id}/", {"action": "flag"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertIn("flag_type", response.json()["errors"])
