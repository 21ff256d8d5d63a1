from rest_framework.routers import DefaultRouter

from picking.views import PickingItemViewSet, PickingTaskViewSet

router = DefaultRouter()
router.register(r"picking-tasks", PickingTaskViewSet, basename="picking-task")
router.register(r"picking-items", PickingItemViewSet, basename="picking-item")

urlpatterns = router.urls
