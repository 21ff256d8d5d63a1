from rest_framework.routers import DefaultRouter

from audits.views import AuditItemViewSet, AuditRecordViewSet

router = DefaultRouter()
router.register(r"audit", AuditRecordViewSet, basename="audit")
router.register(r"audit-items", AuditItemViewSet, basename="audit-item")

urlpatterns = router.urls
