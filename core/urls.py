from django.urls import path
from rest_framework.routers import DefaultRouter

from core.views import ActivityLogViewSet, me

router = DefaultRouter()
router.register(r"admin/activity-logs", ActivityLogViewSet, basename="activity-log")

urlpatterns = router.urls + [
    path("me/", me, name="me"),
]
