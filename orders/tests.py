from datetime import date
from decimal import Decimal
from unittest import mock

from django.contrib.auth import get_user_model
from django.test import TestCase
from rest_framework.exceptions import ValidationError
from rest_framework.test import APIClient

from common.exceptions import InvalidState
from inventory.ledger import apply_transaction, lock_inventories
from inventory.models import Inventory, Supplier, Transaction
from inventory.services import create_part
from orders.models import Order, OrderItem
from orders.services import create_order, receive_order, set_line


class OrderServiceTests(TestCase):
    def setUp(self):
        self.supplier = Supplier.objects.create(code="SUP-1", name="Acme")
        self.bolt = create_part(code="P-BOLT", name="Bolt", unit_price=Decimal("0.25"))
        self.nut = create_part(code="P-NUT", name="Nut", unit_price=Decimal("0.10"))
        self.order = create_order(
            supplier=self.supplier,
            order_date=date(2025, 1, 10),
            status=Order.Status.ORDERED,
            lines=[
                {"part": self.bolt, "order_qty": 100},
                {"part": self.nut, "order_qty": 50, "unit_price": Decimal("0.12")},
            ],
        )
        self.bolt_line = self.order.items.get(part=self.bolt)
        self.nut_line = self.order.items.get(part=self.nut)

    def test_create_order_allocates_code_and_totals(self):
        self.assertRegex(self.order.code, r"^PO\d{4}-0001$")
        self.assertEqual(self.order.total_amount, Decimal("31.00"))
        self.assertEqual(self.bolt_line.unit_price, Decimal("0.25"))

    def test_partial_then_full_receipt(self):
        order, entries = receive_order(self.order, [(self.bolt_line.id, 60)], performed_by="dock")

        self.assertEqual(order.status, Order.Status.PARTIAL)
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].transaction_type, Transaction.Type.INBOUND)
        self.assertEqual(entries[0].reference_type, Transaction.ReferenceType.ORDER)
        self.assertEqual(entries[0].reference_id, order.code)
        self.assertEqual(Inventory.objects.get(part=self.bolt).current_qty, 60)

        order, entries = receive_order(order, [(self.bolt_line.id, 40), (self.nut_line.id, 50)])

        self.assertEqual(order.status, Order.Status.RECEIVED)
        self.assertIsNotNone(order.received_at)
        self.assertEqual(Inventory.objects.get(part=self.bolt).current_qty, 100)
        self.assertEqual(OrderItem.objects.get(pk=self.nut_line.pk).status, OrderItem.Status.RECEIVED)

    def test_over_receipt_rolls_back_every_line(self):
        with self.assertRaises(ValidationError):
            receive_order(self.order, [(self.bolt_line.id, 10), (self.nut_line.id, 51)])

        self.assertEqual(Inventory.objects.get(part=self.bolt).current_qty, 0)
        self.assertFalse(Transaction.objects.exists())
        self.assertEqual(OrderItem.objects.get(pk=self.bolt_line.pk).received_qty, 0)

    def test_receipt_locks_every_inventory_row_before_posting(self):
        events = []

        def lock(part_ids):
            events.append(("lock", sorted(str(part_id) for part_id in part_ids)))
            return lock_inventories(part_ids)

        def post(part, *args, **kwargs):
            events.append(("post", str(part.pk)))
            return apply_transaction(part, *args, **kwargs)

        with mock.patch("orders.services.lock_inventories", side_effect=lock), mock.patch(
            "orders.services.apply_transaction", side_effect=post
        ):
            receive_order(self.order, [(self.bolt_line.id, 10), (self.nut_line.id, 5)])

        expected = sorted(str(part.pk) for part in (self.bolt, self.nut))
        self.assertEqual(events, [("lock", expected)] + [("post", str(self.bolt.pk)), ("post", str(self.nut.pk))])

    def test_draft_orders_cannot_be_received(self):
        Order.objects.filter(pk=self.order.pk).update(status=Order.Status.DRAFT)

        with self.assertRaises(InvalidState):
            receive_order(self.order, [(self.bolt_line.id, 1)])

    def test_line_cannot_drop_below_received(self):
        receive_order(self.order, [(self.bolt_line.id, 30)])

        with self.assertRaises(ValidationError):
            set_line(self.order, self.bolt, 20)
        self.assertEqual(set_line(self.order, self.bolt, 30).order_qty, 30)


class OrderApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        user_model = get_user_model()
        self.manager = user_model.objects.create_user(
            username="manager",
            password="pass1234",
            role=user_model.Role.MANAGER,
        )
        self.supplier = Supplier.objects.create(code="SUP-1", name="Acme")
        self.part = create_part(code="P-GEAR", name="Gear", unit_price=Decimal("3.00"))
        self.client.force_authenticate(user=self.manager)

    def test_create_and_receive_over_http(self):
        response = self.client.post(
            "/api/v1/orders/",
            {
                "supplier": str(self.supplier.id),
                "order_date": "2025-01-10",
                "status": "ORDERED",
                "lines": [{"part": str(self.part.id), "order_qty": 4}],
            },
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        order = response.json()
        self.assertEqual(order["total_amount"], "12.00")
        line_id = order["items"][0]["id"]

        response = self.client.post(
            f"/api/v1/orders/{order['id']}/receive/",
            {"items": [{"order_item_id": line_id, "received_qty": 4}]},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["order"]["status"], "RECEIVED")
        self.assertEqual(response.json()["transactions"][0]["reference_id"], order["code"])
        self.assertEqual(Inventory.objects.get(part=self.part).current_qty, 4)

    def test_receipt_statuses_cannot_be_set_directly(self):
        response = self.client.post(
            "/api/v1/orders/",
            {"supplier": str(self.supplier.id), "order_date": "2025-01-10", "status": "RECEIVED"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("status", response.json()["errors"])

    def test_received_order_cannot_be_deleted(self):
        order = create_order(
            supplier=self.supplier,
            order_date=date(2025, 1, 10),
            status=Order.Status.ORDERED,
            lines=[{"part": self.part, "order_qty": 2}],
        )
        receive_order(order, [(order.items.get().id, 1)])

        response = self.client.delete(f"/api/v1/orders/{order.id}/")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "invalid_state")
        self.assertTrue(Order.objects.filter(pk=order.pk).exists())
