import datetime
import decimal
import logging
import uuid

from django.db import transaction

from core.models import EventOutbox

logger = logging.getLogger("events")


def _to_json_compatible(value):
    if isinstance(value, dict):
        return {key: _to_json_compatible(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_to_json_compatible(item) for item in value]
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, decimal.Decimal):
        return str(value)
    if isinstance(value, (datetime.date, datetime.datetime, datetime.time)):
        return value.isoformat()
    return value


def emit_event(entity, entity_id, op, payload):
    """Queue a notification event in the outbox.

    The row is written in the caller's transaction so an event never outlives a
    rolled back change. Delivery of outbox rows happens outside this service.
    """
    envelope = {
        "entity": entity,
        "op": op,
        "entity_id": str(entity_id),
        "payload": _to_json_compatible(dict(payload or {})),
    }
    event = EventOutbox.objects.create(
        entity=entity,
        entity_id=entity_id,
        op=op,
        payload=envelope,
    )
    transaction.on_commit(lambda: logger.debug("event_queued %s.%s %s", entity, op, entity_id))
    return event
