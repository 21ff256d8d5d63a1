from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand
from django.db import transaction
from django.utils import timezone

from inventory.ledger import Reference, apply_transaction
from inventory.models import BomItem, Category, Part, Supplier, Transaction
from inventory.services import create_part, create_product
from orders.models import SalesOrder
from orders.services import create_order, create_sales_order

DEMO_USERS = (
    ("admin", "admin", True),
    ("manager", "manager", False),
    ("operator", "operator", False),
    ("viewer", "viewer", False),
)

DEMO_PARTS = (
    ("Hex bolt M8", "A-01-01", Decimal("0.35"), 200, 50),
    ("Flat washer M8", "A-01-02", Decimal("0.05"), 500, 100),
    ("Steel bracket", "B-02-01", Decimal("4.20"), 40, 10),
    ("Rubber grommet", "B-02-03", Decimal("0.80"), 0, 20),
)


class Command(BaseCommand):
    help = "Seed demo users, suppliers, parts, stock and a sales order for local development."

    def _users(self):
        User = get_user_model()
        for username, role, is_superuser in DEMO_USERS:
            user, created = User.objects.get_or_create(
                username=username,
                defaults={
                    "email": f"{username}@example.com",
                    "role": role,
                    "is_staff": is_superuser,
                    "is_superuser": is_superuser,
                    "is_active": True,
                },
            )
            if created:
                user.set_password(f"{username}1234")
                user.save(update_fields=["password"])

    @transaction.atomic
    def handle(self, *args, **options):
        self._users()

        if Part.objects.exists():
            self.stdout.write(self.style.WARNING("Parts already exist; skipping catalog seed."))
            return

        category, _ = Category.objects.get_or_create(name="Fasteners")
        supplier, _ = Supplier.objects.get_or_create(
            code="SUP-001",
            defaults={"name": "Acme Industrial Supply", "contact_name": "Jordan Lee", "lead_time_days": 5},
        )

        parts = []
        for name, location, price, stock, safety in DEMO_PARTS:
            part = create_part(
                name=name,
                storage_location=location,
                unit_price=price,
                safety_stock=safety,
                category=category,
                supplier=supplier,
            )
            if stock:
                apply_transaction(
                    part,
                    Transaction.Type.INBOUND,
                    stock,
                    reference=Reference.manual(),
                    performed_by="seed",
                    reason="Opening balance",
                )
            parts.append(part)

        today = timezone.localdate()
        create_order(
            supplier=supplier,
            order_date=today,
            expected_date=today + timedelta(days=supplier.lead_time_days),
            lines=[{"part": parts[3], "order_qty": 100}],
            notes="Replenish grommets",
        )

        product = create_product(name="Mounting kit", category="Kits")
        BomItem.objects.create(product=product, part=parts[0], quantity_per_unit=Decimal("4"))
        BomItem.objects.create(product=product, part=parts[1], quantity_per_unit=Decimal("4"), loss_rate=Decimal("1.05"))
        BomItem.objects.create(product=product, part=parts[2], quantity_per_unit=Decimal("1"))

        sales_order = create_sales_order(
            order_date=today,
            due_date=today + timedelta(days=2),
            customer="Demo Customer",
            status=SalesOrder.Status.RECEIVED,
            lines=[{"product": product, "order_qty": 5}],
        )

        self.stdout.write(
            self.style.SUCCESS(
                f"Seeded {len(parts)} parts, product {product.code} and sales order {sales_order.code}."
            )
        )
