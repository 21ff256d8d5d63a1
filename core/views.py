import logging

from django.db import connections
from django.utils.dateparse import parse_datetime
from rest_framework import viewsets
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework_simplejwt.views import TokenObtainPairView

from common.permissions import RoleCapabilityPermission
from core.models import ActivityLog
from core.serializers import ActivityLogSerializer, EmailOrUsernameTokenObtainPairSerializer, UserSummarySerializer

logger = logging.getLogger(__name__)


class EmailOrUsernameTokenObtainPairView(TokenObtainPairView):
    serializer_class = EmailOrUsernameTokenObtainPairSerializer
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "auth"


@api_view(["GET"])
def me(request):
    return Response(UserSummarySerializer(request.user).data)


class ActivityLogViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = ActivityLog.objects.select_related("actor")
    serializer_class = ActivityLogSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "admin.records.manage", "retrieve": "admin.records.manage"}

    def get_queryset(self):
        qs = self.queryset.order_by("-created_at")
        params = self.request.query_params

        start_date = params.get("start_date")
        end_date = params.get("end_date")
        if start_date:
            dt = parse_datetime(start_date)
            if dt:
                qs = qs.filter(created_at__gte=dt)
        if end_date:
            dt = parse_datetime(end_date)
            if dt:
                qs = qs.filter(created_at__lte=dt)
        if params.get("actor_id"):
            qs = qs.filter(actor_id=params["actor_id"])
        if params.get("action"):
            qs = qs.filter(action=params["action"])
        if params.get("entity"):
            qs = qs.filter(entity=params["entity"])
        if params.get("entity_id"):
            qs = qs.filter(entity_id=params["entity_id"])
        return qs


@api_view(["GET"])
@permission_classes([AllowAny])
def healthz(request):
    return Response({"status": "ok", "request_id": getattr(request, "request_id", None)})


@api_view(["GET"])
@permission_classes([AllowAny])
def readyz(request):
    try:
        with connections["default"].cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
    except Exception as exc:
        logger.exception("readiness_check_failed")
        return Response(
            {"status": "error", "request_id": getattr(request, "request_id", None), "detail": str(exc)},
            status=503,
        )

    return Response({"status": "ready", "request_id": getattr(request, "request_id", None)})
