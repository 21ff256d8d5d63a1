from rest_framework.routers import DefaultRouter

from imports.views import BulkUploadLogViewSet

router = DefaultRouter()
router.register(r"bulk-upload-logs", BulkUploadLogViewSet, basename="bulk-upload-log")

urlpatterns = router.urls
