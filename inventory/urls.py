from rest_framework.routers import DefaultRouter

from inventory.views import (
    CategoryViewSet,
    InventoryViewSet,
    PartViewSet,
    ProductViewSet,
    SupplierViewSet,
    TransactionViewSet,
)

router = DefaultRouter()
router.register(r"categories", CategoryViewSet, basename="category")
router.register(r"suppliers", SupplierViewSet, basename="supplier")
router.register(r"parts", PartViewSet, basename="part")
router.register(r"inventory", InventoryViewSet, basename="inventory")
router.register(r"transactions", TransactionViewSet, basename="transaction")
router.register(r"products", ProductViewSet, basename="product")

urlpatterns = router.urls
