"""Picking task lifecycle.

Item actions only move item state; stock leaves the ledger once, when the task
is completed. Each picked item keeps a link to the OUTBOUND row it produced so
an item is never posted twice.
"""

import logging
import math
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from common.exceptions import AlreadyCompleted, Conflict, InvalidState
from common.utils import emit_event
from inventory.codes import allocate_code, date_scope
from inventory.ledger import Reference, apply_transaction, lock_inventories
from inventory.models import BomItem, Transaction
from orders.models import SalesOrder
from picking.models import PickingItem, PickingTask

logger = logging.getLogger("picking")

Status = PickingItem.Status

# target status -> statuses an item may be in beforehand
ALLOWED_TRANSITIONS = {
    Status.IN_PROGRESS: {Status.PENDING, Status.IN_PROGRESS},
    Status.PICKED: {Status.PENDING, Status.IN_PROGRESS},
    Status.SKIPPED: {Status.PENDING, Status.IN_PROGRESS},
    Status.PENDING: {Status.PENDING, Status.PICKED, Status.SKIPPED},
}

ACTIONS = ("scan", "pick", "skip", "flag", "revert-skip", "revert-pick")


@dataclass(frozen=True)
class CompletionResult:
    task: PickingTask
    picked_count: int
    skipped_count: int
    transaction_count: int


def location_sort_key(location):
    """Order ``ZONE-ROW-SHELF`` strings naturally; blank locations sort last."""
    if not location:
        return (1, ())
    segments = []
    for segment in location.split("-"):
        segment = segment.strip()
        segments.append((0, int(segment), "") if segment.isdigit() else (1, 0, segment.upper()))
    return (0, tuple(segments))


def _priority_for(sales_order, today):
    window = getattr(settings, "PICKING_HIGH_PRIORITY_DAYS", 3)
    if sales_order.due_date and sales_order.due_date <= today + timedelta(days=window):
        return PickingTask.Priority.HIGH
    return PickingTask.Priority.NORMAL


def required_parts(sales_order):
    """Part requirements for a sales order from the active BOM rows, keyed by part."""
    requirements = {}
    for so_item in sales_order.items.all():
        bom_rows = BomItem.objects.filter(
            product_id=so_item.product_id,
            is_active=True,
            part__is_active=True,
        ).select_related("part")
        for bom in bom_rows:
            qty = math.ceil(Decimal(so_item.order_qty) * bom.quantity_per_unit * bom.loss_rate)
            part, total = requirements.get(bom.part_id, (bom.part, 0))
            requirements[bom.part_id] = (part, total + qty)
    return requirements


def create_task_from_sales_order(sales_order, *, assigned_to="", notes=""):
    today = timezone.localdate()
    with transaction.atomic():
        sales_order = SalesOrder.objects.select_for_update().get(pk=sales_order.pk)
        if PickingTask.objects.filter(sales_order=sales_order).exists():
            raise Conflict(f"A picking task already exists for sales order {sales_order.code}.")
        if sales_order.status in (SalesOrder.Status.COMPLETED, SalesOrder.Status.CANCELLED):
            raise InvalidState(f"Sales order {sales_order.code} is {sales_order.status}.")

        requirements = required_parts(sales_order)
        if not requirements:
            raise ValidationError({"sales_order": ["No parts are required by this sales order's bill of materials."]})

        task = PickingTask.objects.create(
            code=allocate_code(date_scope("PICK", "%y%m%d", today), model=PickingTask),
            sales_order=sales_order,
            priority=_priority_for(sales_order, today),
            assigned_to=assigned_to or "",
            notes=notes or "",
            total_items=len(requirements),
        )
        ordered = sorted(requirements.values(), key=lambda pair: (location_sort_key(pair[0].storage_location), pair[0].code))
        PickingItem.objects.bulk_create(
            [
                PickingItem(
                    task=task,
                    part=part,
                    storage_location=part.storage_location,
                    sequence=index,
                    required_qty=qty,
                )
                for index, (part, qty) in enumerate(ordered, start=1)
            ]
        )

        sales_order.status = SalesOrder.Status.IN_PROGRESS
        sales_order.save(update_fields=["status", "updated_at"])
        emit_event("picking_task", task.id, "create", {"code": task.code, "sales_order": sales_order.code})

    logger.info("picking_task_created", extra={"task_code": task.code, "total_rows": task.total_items})
    return task


def recompute_task_counters(task):
    items = task.items.all()
    task.total_items = items.count()
    task.picked_items = items.filter(status__in=[Status.PICKED, Status.SKIPPED]).count()
    fields = ["total_items", "picked_items", "updated_at"]
    if task.status == PickingTask.Status.PENDING:
        task.status = PickingTask.Status.IN_PROGRESS
        task.started_at = timezone.now()
        fields += ["status", "started_at"]
    task.save(update_fields=fields)
    return task


def _parse_picked_qty(item, picked_qty):
    if picked_qty is None or picked_qty == "":
        return item.required_qty
    if isinstance(picked_qty, bool):
        raise ValidationError({"picked_qty": ["Picked quantity must be an integer."]})
    try:
        value = int(picked_qty)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError({"picked_qty": ["Picked quantity must be an integer."]})
    if value < 0:
        raise ValidationError({"picked_qty": ["Picked quantity cannot be negative."]})
    if value > item.required_qty:
        raise ValidationError({"picked_qty": [f"Picked quantity cannot exceed the required {item.required_qty}."]})
    return value


def _move(item, target):
    if item.status not in ALLOWED_TRANSITIONS[target]:
        raise InvalidState(f"Item cannot move from {item.status} to {target}.")
    item.status = target


def _apply(item, action, picked_qty, notes, flag_type):
    now = timezone.now()
    if action == "scan":
        _move(item, Status.IN_PROGRESS)
        item.scanned_at = now
    elif action == "pick":
        item.picked_qty = _parse_picked_qty(item, picked_qty)
        _move(item, Status.PICKED)
        item.verified_at = now
    elif action == "skip":
        _move(item, Status.SKIPPED)
        item.notes = notes or "Skipped"
    elif action == "flag":
        if flag_type not in PickingItem.FlagType.values:
            raise ValidationError({"flag_type": [f"Unknown flag type: {flag_type!r}."]})
        _move(item, Status.SKIPPED)
        item.flag_type = flag_type
        item.notes = f"[FLAGGED: {flag_type}] {notes or ''}".rstrip()
    elif action == "revert-skip":
        if item.status != Status.SKIPPED:
            raise InvalidState("Only skipped items can be reverted.")
        _move(item, Status.PENDING)
        item.flag_type = ""
    elif action == "revert-pick":
        if item.status != Status.PICKED:
            raise InvalidState("Only picked items can be reverted.")
        _move(item, Status.PENDING)
        item.picked_qty = 0
        item.verified_at = None
    else:
        raise ValidationError({"action": [f"Unknown action: {action!r}."]})

    if notes is not None and action not in ("skip", "flag"):
        item.notes = notes


def _apply_fields(item, status, picked_qty, notes):
    if status is not None:
        if status not in Status.values:
            raise ValidationError({"status": [f"Unknown status: {status!r}."]})
        if status != item.status:
            _move(item, status)
            if status == Status.PICKED:
                item.picked_qty = _parse_picked_qty(item, picked_qty)
                item.verified_at = timezone.now()
                picked_qty = None
            elif status == Status.IN_PROGRESS:
                item.scanned_at = timezone.now()
            elif status == Status.PENDING:
                item.picked_qty = 0
                item.flag_type = ""
    if picked_qty is not None:
        item.picked_qty = _parse_picked_qty(item, picked_qty)
    if notes is not None:
        item.notes = notes


def _locked_item(item):
    task = PickingTask.objects.select_for_update().get(pk=item.task_id)
    if task.status == PickingTask.Status.COMPLETED:
        raise InvalidState(f"Picking task {task.code} is completed; its items can no longer change.")
    return task, PickingItem.objects.select_for_update().get(pk=item.pk)


def apply_item_action(item, action, *, picked_qty=None, notes=None, flag_type=None):
    with transaction.atomic():
        task, item = _locked_item(item)
        _apply(item, action, picked_qty, notes, flag_type)
        item.save()
        recompute_task_counters(task)
    logger.info("picking_item_updated", extra={"task_code": task.code, "code": action})
    return item


def update_item_fields(item, *, status=None, picked_qty=None, notes=None):
    with transaction.atomic():
        task, item = _locked_item(item)
        _apply_fields(item, status, picked_qty, notes)
        item.save()
        recompute_task_counters(task)
    return item


def complete_task(task, *, performed_by=""):
    """Complete a picking task and post one OUTBOUND per picked item.

    Raises ``AlreadyCompleted`` on a second call. A stock shortfall on any item
    rolls the whole completion back.
    """
    with transaction.atomic():
        task = PickingTask.objects.select_for_update().get(pk=task.pk)
        if task.status == PickingTask.Status.COMPLETED:
            raise AlreadyCompleted(f"Picking task {task.code} is already completed.")

        items = list(task.items.select_related("part").select_for_update(of=("self",)))
        to_post = [
            item
            for item in items
            if item.status == Status.PICKED and item.picked_qty > 0 and not item.outbound_transaction_id
        ]
        lock_inventories([item.part_id for item in to_post])
        posted = 0
        for item in to_post:
            item.outbound_transaction = apply_transaction(
                item.part,
                Transaction.Type.OUTBOUND,
                item.picked_qty,
                reference=Reference.picking(task.code),
                performed_by=performed_by,
                reason=f"Picking {task.code}",
            )
            item.save(update_fields=["outbound_transaction"])
            posted += 1

        picked = sum(1 for item in items if item.status == Status.PICKED)
        skipped = sum(1 for item in items if item.status == Status.SKIPPED)
        task.status = PickingTask.Status.COMPLETED
        task.completed_at = timezone.now()
        task.started_at = task.started_at or task.completed_at
        task.picked_items = picked + skipped
        task.save(update_fields=["status", "completed_at", "started_at", "picked_items", "updated_at"])

        SalesOrder.objects.filter(pk=task.sales_order_id).update(
            status=SalesOrder.Status.COMPLETED,
            updated_at=task.completed_at,
        )
        emit_event(
            "picking_task",
            task.id,
            "complete",
            {"code": task.code, "picked": picked, "skipped": skipped, "transactions": posted},
        )

    logger.info("picking_task_completed", extra={"task_code": task.code, "success_count": posted})
    return CompletionResult(task=task, picked_count=picked, skipped_count=skipped, transaction_count=posted)
