from rest_framework.routers import DefaultRouter

from orders.views import OrderViewSet, SalesOrderViewSet

router = DefaultRouter()
router.register(r"orders", OrderViewSet, basename="order")
router.register(r"sales-orders", SalesOrderViewSet, basename="sales-order")

urlpatterns = router.urls
