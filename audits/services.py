import logging
from dataclasses import dataclass

from django.db import transaction
from django.db.models import Count, Q
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from common.exceptions import InvalidState
from common.utils import emit_event
from inventory.codes import allocate_code, date_scope
from inventory.ledger import Reference, apply_transaction, lock_inventories
from inventory.models import Inventory, Transaction
from audits.models import AuditItem, AuditRecord

logger = logging.getLogger("audits")


@dataclass(frozen=True)
class AuditStats:
    total_items: int
    matched_items: int
    discrepancy_items: int


def compute_audit_stats(audit):
    """Fresh aggregate over every item of the audit."""
    counts = audit.items.aggregate(
        total=Count("id"),
        matched=Count("id", filter=Q(counted_qty__isnull=False, discrepancy=0)),
        mismatched=Count("id", filter=Q(counted_qty__isnull=False) & ~Q(discrepancy=0)),
    )
    return AuditStats(
        total_items=counts["total"],
        matched_items=counts["matched"],
        discrepancy_items=counts["mismatched"],
    )


def recompute_audit_stats(audit):
    stats = compute_audit_stats(audit)
    audit.total_items = stats.total_items
    audit.matched_items = stats.matched_items
    audit.discrepancy_items = stats.discrepancy_items
    audit.save(update_fields=["total_items", "matched_items", "discrepancy_items", "updated_at"])
    return stats


def create_audit(*, audit_type, audit_date, part_ids=None, performed_by="", notes=""):
    """Open an audit and snapshot system quantities.

    ``part_ids=None`` audits every active part; a list limits the audit to
    those parts.
    """
    if audit_type not in AuditRecord.Type.values:
        raise ValidationError({"audit_type": [f"Unknown audit type: {audit_type!r}."]})

    inventories = Inventory.objects.select_related("part").filter(part__is_active=True)
    scope = AuditRecord.Scope.ALL
    if part_ids is not None:
        wanted = {str(part_id) for part_id in part_ids}
        if not wanted:
            raise ValidationError({"part_ids": ["Select at least one part."]})
        inventories = inventories.filter(part_id__in=wanted)
        found = {str(inventory.part_id) for inventory in inventories}
        missing = sorted(wanted - found)
        if missing:
            raise ValidationError({"part_ids": [f"Unknown or inactive parts: {', '.join(missing)}."]})
        scope = AuditRecord.Scope.PARTIAL

    with transaction.atomic():
        audit = AuditRecord.objects.create(
            code=allocate_code(date_scope("AUD", "%y%m%d", audit_date), model=AuditRecord),
            audit_date=audit_date,
            audit_type=audit_type,
            scope=scope,
            performed_by=performed_by or "",
            notes=notes or "",
        )
        items = AuditItem.objects.bulk_create(
            [
                AuditItem(audit=audit, part=inventory.part, system_qty=inventory.current_qty)
                for inventory in inventories.order_by("part__code")
            ]
        )
        audit.total_items = len(items)
        audit.save(update_fields=["total_items", "updated_at"])
        emit_event("audit", audit.id, "create", {"code": audit.code, "total_items": audit.total_items})

    logger.info("audit_created", extra={"audit_code": audit.code, "total_rows": audit.total_items})
    return audit


def _parse_counted_qty(value):
    if isinstance(value, bool) or value is None or value == "":
        raise ValidationError({"counted_qty": ["Counted quantity is required."]})
    try:
        counted = int(value)
    except (TypeError, ValueError):
        raise ValidationError({"counted_qty": ["Counted quantity must be an integer."]})
    if str(counted) != str(value).strip() and counted != value:
        raise ValidationError({"counted_qty": ["Counted quantity must be a whole number."]})
    if counted < 0:
        raise ValidationError({"counted_qty": ["Counted quantity cannot be negative."]})
    return counted


def record_count(item, counted_qty, notes=None):
    counted_qty = _parse_counted_qty(counted_qty)
    with transaction.atomic():
        audit = AuditRecord.objects.select_for_update().get(pk=item.audit_id)
        if audit.status != AuditRecord.Status.IN_PROGRESS:
            raise InvalidState(f"Audit {audit.code} is {audit.status} and no longer accepts counts.")

        item = AuditItem.objects.select_for_update().get(pk=item.pk)
        item.counted_qty = counted_qty
        item.discrepancy = counted_qty - item.system_qty
        item.counted_at = timezone.now()
        if notes is not None:
            item.notes = notes
        item.save(update_fields=["counted_qty", "discrepancy", "counted_at", "notes"])
        recompute_audit_stats(audit)
    return item


def complete_audit(audit):
    with transaction.atomic():
        audit = AuditRecord.objects.select_for_update().get(pk=audit.pk)
        if audit.status != AuditRecord.Status.IN_PROGRESS:
            raise InvalidState(f"Only in-progress audits can be completed; {audit.code} is {audit.status}.")
        recompute_audit_stats(audit)
        audit.status = AuditRecord.Status.COMPLETED
        audit.completed_at = timezone.now()
        audit.save(update_fields=["status", "completed_at", "updated_at"])
        emit_event(
            "audit",
            audit.id,
            "complete",
            {"code": audit.code, "matched_items": audit.matched_items, "discrepancy_items": audit.discrepancy_items},
        )
    return audit


def approve_audit(audit, *, approved_by=""):
    with transaction.atomic():
        audit = AuditRecord.objects.select_for_update().get(pk=audit.pk)
        if audit.status != AuditRecord.Status.COMPLETED:
            raise InvalidState(f"Only completed audits can be approved; {audit.code} is {audit.status}.")
        audit.status = AuditRecord.Status.APPROVED
        audit.approved_by = approved_by or ""
        audit.approved_at = timezone.now()
        audit.save(update_fields=["status", "approved_by", "approved_at", "updated_at"])
        emit_event("audit", audit.id, "approve", {"code": audit.code, "approved_by": audit.approved_by})
    return audit


def apply_adjustments(audit, *, performed_by=""):
    """Post ADJUSTMENT rows setting each mismatched part to its counted quantity.

    Runs only on approved audits and only once per item; returns the
    transactions created by this call.
    """
    with transaction.atomic():
        audit = AuditRecord.objects.select_for_update().get(pk=audit.pk)
        if audit.status != AuditRecord.Status.APPROVED:
            raise InvalidState(f"Adjustments require an approved audit; {audit.code} is {audit.status}.")

        pending = (
            audit.items.select_related("part")
            .select_for_update(of=("self",))
            .filter(counted_qty__isnull=False, adjustment_transaction__isnull=True)
            .exclude(discrepancy=0)
        )
        pending = list(pending)
        lock_inventories([item.part_id for item in pending])
        entries = []
        for item in pending:
            item.adjustment_transaction = apply_transaction(
                item.part,
                Transaction.Type.ADJUSTMENT,
                item.counted_qty,
                reference=Reference.audit(audit.code),
                performed_by=performed_by,
                reason=f"Audit {audit.code} correction",
                notes=f"system {item.system_qty}, counted {item.counted_qty}",
            )
            item.save(update_fields=["adjustment_transaction"])
            entries.append(item.adjustment_transaction)

    logger.info("audit_adjustments_applied", extra={"audit_code": audit.code, "success_count": len(entries)})
    return entries
