import json
import uuid

from django.core.serializers.json import DjangoJSONEncoder

from core.models import ActivityLog


def get_request_id(request):
    return getattr(request, "request_id", None) or request.headers.get("X-Request-ID")


def _json_safe(value):
    if value is None:
        return None
    return json.loads(json.dumps(value, cls=DjangoJSONEncoder))


def _as_uuid(value):
    if not value:
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        return None


def record_activity(
    *,
    actor=None,
    action,
    entity,
    entity_id=None,
    before_snapshot=None,
    after_snapshot=None,
    request_id=None,
):
    return ActivityLog.objects.create(
        actor=actor,
        action=action,
        entity=entity,
        entity_id=_as_uuid(entity_id),
        before_snapshot=_json_safe(before_snapshot),
        after_snapshot=_json_safe(after_snapshot),
        request_id=request_id,
    )


def record_activity_from_request(
    request,
    *,
    action,
    entity,
    entity_id=None,
    before_snapshot=None,
    after_snapshot=None,
):
    user = getattr(request, "user", None)
    return record_activity(
        actor=user if user is not None and user.is_authenticated else None,
        action=action,
        entity=entity,
        entity_id=entity_id,
        before_snapshot=before_snapshot,
        after_snapshot=after_snapshot,
        request_id=get_request_id(request),
    )
