import logging
from decimal import Decimal, ROUND_HALF_UP

from django.db import transaction
from django.db.models import Sum
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from common.exceptions import InvalidState
from common.utils import emit_event
from inventory.codes import allocate_code, date_scope
from inventory.ledger import Reference, apply_transaction, lock_inventories
from inventory.models import Transaction
from orders.models import Order, OrderItem, SalesOrder

logger = logging.getLogger(__name__)

MONEY_QUANT = Decimal("0.01")

RECEIVABLE_STATUSES = {
    Order.Status.SUBMITTED,
    Order.Status.APPROVED,
    Order.Status.ORDERED,
    Order.Status.PARTIAL,
}


def _to_money(value):
    return Decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def next_order_code(when=None):
    return allocate_code(date_scope("PO", "%y%m", when), model=Order)


def next_sales_order_code(when=None):
    return allocate_code(date_scope("SO", "%y%m", when), model=SalesOrder)


def set_line(order, part, order_qty, unit_price=None, notes=""):
    """Add a line for `part` or replace the existing one's quantity and price."""
    unit_price = _to_money(unit_price if unit_price is not None else part.unit_price)
    item, created = OrderItem.objects.get_or_create(
        order=order,
        part=part,
        defaults={
            "order_qty": order_qty,
            "unit_price": unit_price,
            "total_price": _to_money(unit_price * order_qty),
            "notes": notes or "",
        },
    )
    if not created:
        if order_qty < item.received_qty:
            raise ValidationError({"order_qty": [f"Cannot order fewer than the {item.received_qty} already received."]})
        item.order_qty = order_qty
        item.unit_price = unit_price
        item.total_price = _to_money(unit_price * order_qty)
        if notes:
            item.notes = notes
        item.save(update_fields=["order_qty", "unit_price", "total_price", "notes"])
    return item


def recompute_order_total(order):
    total = order.items.aggregate(total=Sum("total_price"))["total"] or Decimal("0")
    order.total_amount = _to_money(total)
    order.save(update_fields=["total_amount", "updated_at"])
    return order.total_amount


@transaction.atomic
def create_order(*, supplier, order_date, lines=(), code=None, **fields):
    order = Order.objects.create(code=code or next_order_code(), supplier=supplier, order_date=order_date, **fields)
    for line in lines:
        set_line(order, line["part"], line["order_qty"], line.get("unit_price"), line.get("notes", ""))
    recompute_order_total(order)
    emit_event("order", order.id, "create", {"code": order.code, "supplier": supplier.code})
    return order


def receive_order(order, receipts, *, performed_by=""):
    """Post INBOUND movements for received quantities.

    ``receipts`` is a list of ``(order_item_id, quantity)``. Either every line
    is received or none is.
    """
    with transaction.atomic():
        order = Order.objects.select_for_update().get(pk=order.pk)
        if order.status not in RECEIVABLE_STATUSES:
            raise InvalidState(f"Order {order.code} cannot be received while {order.status}.")

        items = {item.id: item for item in order.items.select_related("part").select_for_update(of=("self",))}
        lock_inventories([items[item_id].part_id for item_id, _ in receipts if item_id in items])
        entries = []
        for item_id, quantity in receipts:
            item = items.get(item_id)
            if item is None:
                raise ValidationError({"items": [f"Line {item_id} is not part of order {order.code}."]})
            if quantity <= 0:
                raise ValidationError({"items": ["Received quantity must be greater than zero."]})
            if quantity > item.remaining_qty:
                raise ValidationError(
                    {"items": [f"Received quantity exceeds remaining {item.remaining_qty} for {item.part.code}."]}
                )

            entries.append(
                apply_transaction(
                    item.part,
                    Transaction.Type.INBOUND,
                    quantity,
                    reference=Reference.order(order.code),
                    performed_by=performed_by,
                    reason="Purchase order receipt",
                )
            )
            item.received_qty += quantity
            item.status = OrderItem.Status.RECEIVED if item.received_qty >= item.order_qty else OrderItem.Status.PARTIAL
            item.save(update_fields=["received_qty", "status"])

        open_items = [item for item in order.items.all() if item.status != OrderItem.Status.CANCELLED]
        if open_items and all(item.received_qty >= item.order_qty for item in open_items):
            order.status = Order.Status.RECEIVED
            order.received_at = timezone.now()
        else:
            order.status = Order.Status.PARTIAL
        order.save(update_fields=["status", "received_at", "updated_at"])
        emit_event("order", order.id, "receive", {"code": order.code, "status": order.status})

    logger.info("order_received", extra={"code": order.code, "transaction_code": [e.code for e in entries]})
    return order, entries


@transaction.atomic
def create_sales_order(*, order_date, lines=(), code=None, **fields):
    sales_order = SalesOrder.objects.create(code=code or next_sales_order_code(), order_date=order_date, **fields)
    for line in lines:
        sales_order.items.create(product=line["product"], order_qty=line["order_qty"], notes=line.get("notes", ""))
    emit_event("sales_order", sales_order.id, "create", {"code": sales_order.code})
    return sales_order
