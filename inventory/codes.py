"""Human readable, prefix scoped sequential codes (``PO2501-0001``, ``IN250115-0003``).

Allocation takes a row lock on the scope's ``CodeSequence`` so two callers can
never be handed the same code. The counter is floored by the highest numeric
suffix already stored for the prefix, which keeps explicitly imported codes
from being reissued.
"""

import logging
import re

from django.conf import settings
from django.db import transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from inventory.models import CodeSequence, Transaction

logger = logging.getLogger(__name__)

SCOPE_PATTERN = re.compile(r"^[A-Z][A-Z0-9]{0,19}$")


def validate_scope(scope):
    if not isinstance(scope, str) or not SCOPE_PATTERN.match(scope):
        raise ValidationError({"scope": [f"Malformed code prefix: {scope!r}."]})
    return scope


def date_scope(prefix, fmt="%y%m", when=None):
    """`date_scope("PO")` -> ``PO2501`` for January 2025."""
    day = when or timezone.localdate()
    return validate_scope(f"{prefix}{day.strftime(fmt)}")


def format_code(scope, value):
    width = getattr(settings, "CODE_SUFFIX_WIDTH", 4)
    return f"{scope}-{value:0{width}d}"


def highest_existing_suffix(scope, model, field="code"):
    pattern = rf"^{scope}-[0-9]+$"
    codes = model.objects.filter(**{f"{field}__regex": pattern}).values_list(field, flat=True)
    # suffix widths can differ for imported codes, so compare numerically
    return max((int(code.rsplit("-", 1)[1]) for code in codes), default=0)


def allocate_code(scope, *, model, field="code"):
    """Return the next code for `scope`, unique among `model.field` values.

    Must run inside the caller's transaction to keep the lock until the code is
    persisted; the atomic block below becomes a savepoint in that case.

    Lock order is inventory rows first, then the sequence row. A caller that
    posts several ledger entries in one transaction locks all of their
    inventory rows (``inventory.ledger.lock_inventories``) before the first
    allocation.
    """
    validate_scope(scope)
    with transaction.atomic():
        sequence, _ = CodeSequence.objects.select_for_update().get_or_create(scope=scope)
        next_value = max(sequence.last_value, highest_existing_suffix(scope, model, field)) + 1
        sequence.last_value = next_value
        sequence.save(update_fields=["last_value", "updated_at"])

    code = format_code(scope, next_value)
    logger.debug("code_allocated", extra={"scope": scope, "code": code})
    return code


def transaction_scope(transaction_type, when=None):
    prefixes = {
        Transaction.Type.INBOUND: "IN",
        Transaction.Type.OUTBOUND: "OUT",
        Transaction.Type.ADJUSTMENT: "ADJ",
        Transaction.Type.TRANSFER: "TRF",
    }
    return date_scope(prefixes[transaction_type], fmt="%y%m%d", when=when)
