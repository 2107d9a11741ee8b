import uuid
from django.db import models


class ProductModel(models.Model):
    # Catalog-owned row; the order pipeline only ever changes stock_qty
    name = models.CharField(max_length=255)
    region = models.CharField(max_length=100, db_index=True)
    price = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3)
    stock_qty = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "products"

    def __str__(self):
        return f"{self.name} ({self.region})"


class RegionPricingConfigModel(models.Model):
    region = models.CharField(max_length=50, unique=True)
    vat_percentage = models.DecimalField(max_digits=5, decimal_places=2)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "region_pricing_config"

    def save(self, *args, **kwargs):
        self.region = self.region.strip().upper()
        super().save(*args, **kwargs)


class OrderModel(models.Model):
    # UUID PK exposed by the API
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Human-facing order number, see OrderNumber
    internal_id = models.BigIntegerField(unique=True, editable=False, null=True)

    class Status(models.TextChoices):
        CREATED = "CREATED"
        STOCK_RESERVED = "STOCK_RESERVED"
        CONFIRMED = "CONFIRMED"
        ABORTED = "ABORTED"

    customer_id = models.CharField(max_length=100, db_index=True)
    region = models.CharField(max_length=100, db_index=True)
    status = models.CharField(max_length=32, choices=Status.choices, default=Status.CREATED)
    total_price = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    confirmation_number = models.CharField(max_length=64, null=True, blank=True)
    contact_name = models.CharField(max_length=255, null=True, blank=True)
    phone_number = models.CharField(max_length=50, null=True, blank=True)
    delivery_address = models.TextField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "orders"
        ordering = ["-internal_id"]

    def save(self, *args, **kwargs):
        # Assign `internal_id` only on creation
        if self.internal_id is None:
            self.internal_id = OrderNumber.allocate()

        super().save(*args, **kwargs)


class OrderNumber(models.Model):
    """Issued order numbers.

    The primary key comes from the database's own sequence, so concurrent
    orders never wait on each other for a number. A rolled-back order may
    leave a gap.
    """

    id = models.BigAutoField(primary_key=True)
    issued_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "order_numbers"

    @classmethod
    def allocate(cls) -> int:
        return cls.objects.create().pk


class OrderLineModel(models.Model):
    order = models.ForeignKey(OrderModel, on_delete=models.CASCADE, related_name="lines")
    product = models.ForeignKey(ProductModel, on_delete=models.PROTECT, related_name="+")
    position = models.PositiveSmallIntegerField(default=0)
    product_name = models.CharField(max_length=255)
    quantity = models.PositiveIntegerField()
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    region = models.CharField(max_length=100)
    vat_percentage = models.DecimalField(max_digits=5, decimal_places=2)
    vat_amount = models.DecimalField(max_digits=12, decimal_places=2)
    final_price = models.DecimalField(max_digits=12, decimal_places=2)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "order_items"
        ordering = ["order_id", "position"]


class IdempotencyKey(models.Model):
    key = models.CharField(max_length=200, primary_key=True)
    request_hash = models.CharField(max_length=64)
    # 0 while the first request is still being processed
    response_status = models.PositiveSmallIntegerField(default=0)
    response_body = models.JSONField(default=dict)
    order_id = models.UUIDField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "idempotency_keys"
