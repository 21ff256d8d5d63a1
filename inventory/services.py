from django.db import transaction
from django.db.models import ProtectedError

from common.utils import emit_event
from inventory.codes import allocate_code, date_scope
from inventory.models import Inventory, Part, Product


def create_part(*, code=None, **fields):
    """Create a part together with its empty inventory row."""
    with transaction.atomic():
        if not code:
            code = allocate_code(date_scope("P"), model=Part)
        part = Part.objects.create(code=code, **fields)
        Inventory.objects.create(part=part)
        emit_event("part", part.id, "create", {"code": part.code, "name": part.name})
    return part


def _deactivate(part):
    if part.is_active:
        part.is_active = False
        part.save(update_fields=["is_active", "updated_at"])
        emit_event("part", part.id, "deactivate", {"code": part.code})


def retire_part(part):
    """Deactivate a part that is referenced anywhere, delete one that is not.

    Returns True when the part was hard deleted.
    """
    with transaction.atomic():
        part = Part.objects.select_for_update().get(pk=part.pk)
        if part.transactions.exists():
            _deactivate(part)
            return False

        part_id, code = part.id, part.code
        try:
            with transaction.atomic():
                Inventory.objects.filter(part_id=part_id).delete()
                part.delete()
        except ProtectedError:
            _deactivate(part)
            return False
        emit_event("part", part_id, "delete", {"code": code})
        return True


def create_product(*, code=None, **fields):
    with transaction.atomic():
        if not code:
            code = allocate_code("PRD", model=Product)
        return Product.objects.create(code=code, **fields)
