"""Stock movements.

Every change to on-hand quantity goes through :func:`apply_transaction`, which
writes the ledger row and the matching ``Inventory`` update in one atomic
block. The inventory row is locked with ``SELECT ... FOR UPDATE`` and written
with a version check, so two writers on the same part can never both compute
from the same ``before_qty``.
"""

import logging
from dataclasses import dataclass

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from common.exceptions import Conflict, InsufficientStock
from common.utils import emit_event
from inventory.codes import allocate_code, transaction_scope
from inventory.models import Inventory, Part, Transaction

logger = logging.getLogger(__name__)

TYPE_ALIASES = {
    "IN": Transaction.Type.INBOUND,
    "INBOUND": Transaction.Type.INBOUND,
    "입고": Transaction.Type.INBOUND,
    "OUT": Transaction.Type.OUTBOUND,
    "OUTBOUND": Transaction.Type.OUTBOUND,
    "출고": Transaction.Type.OUTBOUND,
    "ADJ": Transaction.Type.ADJUSTMENT,
    "ADJUSTMENT": Transaction.Type.ADJUSTMENT,
    "조정": Transaction.Type.ADJUSTMENT,
    "TRF": Transaction.Type.TRANSFER,
    "TRANSFER": Transaction.Type.TRANSFER,
    "이동": Transaction.Type.TRANSFER,
}

# upper bound of the integer quantity columns
MAX_QUANTITY = 2_147_483_647


@dataclass(frozen=True)
class Reference:
    """What caused a movement. Every kind except MANUAL points at a document code."""

    kind: str = Transaction.ReferenceType.MANUAL
    identifier: str = ""

    def __post_init__(self):
        if self.kind not in Transaction.ReferenceType.values:
            raise ValidationError({"reference_type": [f"Unknown reference type: {self.kind!r}."]})
        if self.kind == Transaction.ReferenceType.MANUAL:
            if self.identifier:
                raise ValidationError({"reference_id": ["Manual movements do not take a reference id."]})
        elif not self.identifier:
            raise ValidationError({"reference_id": [f"A reference id is required for {self.kind} references."]})

    @classmethod
    def manual(cls):
        return cls()

    @classmethod
    def order(cls, code):
        return cls(Transaction.ReferenceType.ORDER, str(code))

    @classmethod
    def sales_order(cls, code):
        return cls(Transaction.ReferenceType.SALES_ORDER, str(code))

    @classmethod
    def picking(cls, code):
        return cls(Transaction.ReferenceType.PICKING, str(code))

    @classmethod
    def audit(cls, code):
        return cls(Transaction.ReferenceType.AUDIT, str(code))

    @classmethod
    def bulk_import(cls, label):
        return cls(Transaction.ReferenceType.IMPORT, str(label)[:64])

    @classmethod
    def parse(cls, kind=None, identifier=None):
        """Build a reference from raw request values; a missing kind means MANUAL."""
        kind = (str(kind).strip().upper() if kind else "") or Transaction.ReferenceType.MANUAL
        return cls(kind, str(identifier).strip() if identifier else "")


@dataclass(frozen=True)
class InventorySnapshot:
    part_id: object
    current_qty: int
    reserved_qty: int
    incoming_qty: int

    @property
    def available_qty(self):
        # negative when outbound movements have eaten into reserved stock
        return self.current_qty - self.reserved_qty


class _StaleInventory(Exception):
    pass


def normalize_type(value):
    """Map a type name or alias (``IN``, ``출고`` ...) to a ``Transaction.Type``."""
    key = str(value or "").strip()
    resolved = TYPE_ALIASES.get(key.upper()) or TYPE_ALIASES.get(key)
    if resolved is None:
        raise ValidationError({"transaction_type": [f"Unknown transaction type: {value!r}."]})
    return resolved


def validate_quantity(transaction_type, quantity):
    if isinstance(quantity, bool):
        raise ValidationError({"quantity": ["Quantity must be an integer."]})
    try:
        value = int(quantity)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError({"quantity": ["Quantity must be an integer."]})
    if value != quantity and str(value) != str(quantity).strip():
        raise ValidationError({"quantity": ["Quantity must be a whole number."]})
    if value > MAX_QUANTITY:
        raise ValidationError({"quantity": [f"Quantity cannot exceed {MAX_QUANTITY}."]})

    if transaction_type == Transaction.Type.ADJUSTMENT:
        if value < 0:
            raise ValidationError({"quantity": ["Adjustment target must be zero or greater."]})
    elif value <= 0:
        raise ValidationError({"quantity": ["Quantity must be greater than zero."]})
    return value


def compute_after_qty(transaction_type, before_qty, quantity):
    if transaction_type == Transaction.Type.INBOUND:
        return before_qty + quantity
    if transaction_type == Transaction.Type.OUTBOUND:
        return before_qty - quantity
    if transaction_type == Transaction.Type.ADJUSTMENT:
        return quantity
    return before_qty


def _lock_inventory(part_id):
    try:
        return (
            Inventory.objects.select_for_update(of=("self",))
            .select_related("part")
            .get(part_id=part_id)
        )
    except Inventory.DoesNotExist:
        raise NotFound(f"No inventory record exists for part {part_id}.")


def lock_inventories(parts):
    """Lock the inventory rows of several parts in ``part_id`` order.

    Callers posting more than one entry in a single transaction take these
    locks up front, so inventory rows are always locked before any code
    sequence row and in the same order by every writer.
    """
    part_ids = {part.pk if isinstance(part, Part) else part for part in parts}
    return list(
        Inventory.objects.select_for_update(of=("self",))
        .filter(part_id__in=part_ids)
        .order_by("part_id")
    )


def _apply_once(part_id, transaction_type, quantity, reference, performed_by, reason, notes):
    inventory = _lock_inventory(part_id)
    part = inventory.part
    if not part.is_active:
        raise Conflict(f"Part {part.code} is inactive.", code="part_inactive")

    before_qty = inventory.current_qty
    after_qty = compute_after_qty(transaction_type, before_qty, quantity)
    if after_qty < 0:
        raise InsufficientStock(part_code=part.code, requested=quantity, available=before_qty)
    if after_qty > MAX_QUANTITY:
        raise ValidationError({"quantity": [f"On-hand quantity for {part.code} would exceed {MAX_QUANTITY}."]})

    now = timezone.now()
    changes = {"current_qty": after_qty, "version": F("version") + 1, "updated_at": now}
    if transaction_type == Transaction.Type.INBOUND:
        changes["last_inbound_at"] = now
    elif transaction_type == Transaction.Type.OUTBOUND:
        changes["last_outbound_at"] = now

    updated = Inventory.objects.filter(pk=inventory.pk, version=inventory.version).update(**changes)
    if updated != 1:
        raise _StaleInventory()

    entry = Transaction.objects.create(
        code=allocate_code(transaction_scope(transaction_type, when=timezone.localdate(now)), model=Transaction),
        transaction_type=transaction_type,
        part=part,
        quantity=quantity,
        before_qty=before_qty,
        after_qty=after_qty,
        reference_type=reference.kind,
        reference_id=reference.identifier,
        reason=reason or "",
        notes=notes or "",
        performed_by=performed_by or "",
        transaction_date=now,
    )

    emit_event(
        "inventory",
        part.id,
        "transaction",
        {
            "transaction_code": entry.code,
            "transaction_type": transaction_type,
            "part_code": part.code,
            "before_qty": before_qty,
            "after_qty": after_qty,
            "reference_type": reference.kind,
            "reference_id": reference.identifier,
        },
    )
    if part.safety_stock and after_qty <= part.safety_stock:
        emit_event(
            "inventory",
            part.id,
            "low_stock",
            {"part_code": part.code, "current_qty": after_qty, "safety_stock": part.safety_stock},
        )
    return entry


def apply_transaction(
    part,
    transaction_type,
    quantity,
    *,
    reference=None,
    performed_by="",
    reason="",
    notes="",
):
    """Record one stock movement and update the part's inventory row.

    ``part`` may be a ``Part`` or its primary key. Raises ``ValidationError``
    for a bad type or quantity, ``NotFound`` when the part has no inventory
    row, ``InsufficientStock`` when an OUTBOUND would go negative and
    ``Conflict`` for inactive parts or when the version check keeps failing.
    """
    transaction_type = normalize_type(transaction_type)
    quantity = validate_quantity(transaction_type, quantity)
    reference = reference or Reference.manual()
    part_id = part.pk if isinstance(part, Part) else part

    max_attempts = max(1, int(getattr(settings, "INVENTORY_LEDGER_MAX_RETRIES", 5)))
    for attempt in range(1, max_attempts + 1):
        try:
            with transaction.atomic():
                entry = _apply_once(part_id, transaction_type, quantity, reference, performed_by, reason, notes)
        except _StaleInventory:
            logger.warning("ledger_version_conflict", extra={"attempt": attempt, "code": str(part_id)})
            continue

        logger.info(
            "ledger_transaction_applied",
            extra={
                "transaction_code": entry.code,
                "transaction_type": entry.transaction_type,
                "part_code": entry.part.code,
                "before_qty": entry.before_qty,
                "after_qty": entry.after_qty,
            },
        )
        return entry

    raise Conflict("Inventory was modified concurrently; please retry.", code="concurrent_update")


def _adjust_reservation(part, delta):
    part_id = part.pk if isinstance(part, Part) else part
    with transaction.atomic():
        inventory = _lock_inventory(part_id)
        if delta > 0 and inventory.available_qty < delta:
            raise InsufficientStock(part_code=inventory.part.code, requested=delta, available=inventory.available_qty)
        if delta < 0 and inventory.reserved_qty < -delta:
            raise ValidationError({"quantity": ["Cannot release more than is reserved."]})
        Inventory.objects.filter(pk=inventory.pk).update(
            reserved_qty=F("reserved_qty") + delta,
            version=F("version") + 1,
            updated_at=timezone.now(),
        )
        inventory.refresh_from_db()
        return inventory


def reserve(part, quantity):
    """Hold stock for later use; no ledger row because nothing moved."""
    return _adjust_reservation(part, validate_quantity(Transaction.Type.OUTBOUND, quantity))


def release(part, quantity):
    return _adjust_reservation(part, -validate_quantity(Transaction.Type.OUTBOUND, quantity))


def inventory_snapshot(part):
    part_id = part.pk if isinstance(part, Part) else part
    try:
        inventory = Inventory.objects.get(part_id=part_id)
    except Inventory.DoesNotExist:
        raise NotFound(f"No inventory record exists for part {part_id}.")
    return InventorySnapshot(
        part_id=part_id,
        current_qty=inventory.current_qty,
        reserved_qty=inventory.reserved_qty,
        incoming_qty=inventory.incoming_qty,
    )


def replay_quantity(part):
    """Recompute on-hand quantity by folding the part's ledger history from zero."""
    part_id = part.pk if isinstance(part, Part) else part
    quantity = 0
    entries = (
        Transaction.objects.filter(part_id=part_id)
        .order_by("transaction_date", "created_at")
        .values_list("transaction_type", "quantity")
    )
    for transaction_type, amount in entries:
        quantity = compute_after_qty(transaction_type, quantity, amount)
    return quantity
