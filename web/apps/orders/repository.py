"""Repository layer backed by the Django ORM.

This module contains the database implementations of the domain ports:
the unit of work (``transaction.atomic``), the catalog reader, the stock
ledger, the region VAT lookup and the order repository. They return domain
dataclasses so the domain layer is not coupled to ORM types.
"""

from contextlib import AbstractContextManager
from decimal import Decimal
from typing import Callable, Optional

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from .domain import (
    STOCK_REGIONS,
    CachePort,
    CacheRegion,
    ContactInfo,
    Order,
    OrderLine,
    OrderStatus,
    ProductSnapshot,
    Reservation,
)
from .errors import InsufficientStock, ProductNotFound
from .models import OrderLineModel, OrderModel, ProductModel, RegionPricingConfigModel


class DjangoUnitOfWork:
    """Unit of work mapped onto Django database transactions."""

    def atomic(self) -> AbstractContextManager:
        return transaction.atomic()

    def on_commit(self, callback: Callable[[], None]) -> None:
        transaction.on_commit(callback)


def product_from_model(obj: ProductModel) -> ProductSnapshot:
    return ProductSnapshot(
        id=obj.id,
        name=obj.name,
        region=obj.region,
        price=obj.price,
        currency=obj.currency,
        stock_qty=obj.stock_qty,
    )


class DjangoCatalog:
    """Reads product data straight from the database (never from cache)."""

    def get_product(self, product_id: int) -> Optional[ProductSnapshot]:
        obj = ProductModel.objects.filter(pk=product_id).first()
        return product_from_model(obj) if obj else None


class CachedCatalog:
    """Catalog reads served from the ``product_details`` cache region.

    Only used for price quotes; the order pipeline reads the database.
    """

    def __init__(self, cache):
        self.cache = cache

    def _load(self, product_id: int) -> Optional[ProductSnapshot]:
        obj = ProductModel.objects.filter(pk=product_id).first()
        return product_from_model(obj) if obj else None

    def get_product(self, product_id: int) -> Optional[ProductSnapshot]:
        key = f"product:{product_id}"
        return self.cache.read_through(CacheRegion.PRODUCT_DETAILS, key, lambda: self._load(product_id))


class DjangoInventoryLedger:
    """Stock ledger over the ``products.stock_qty`` column.

    Reservations are a single ``UPDATE ... WHERE stock_qty >= quantity``
    statement. The database evaluates the condition and the decrement
    under the row lock, so concurrent reservations on the same product can
    never oversell and no read-modify-write happens in Python.
    """

    def __init__(self, cache: Optional[CachePort] = None):
        self.cache = cache

    def available(self, product_id: int) -> Optional[int]:
        return ProductModel.objects.filter(pk=product_id).values_list("stock_qty", flat=True).first()

    def check_available(self, product_id: int, quantity: int) -> bool:
        return ProductModel.objects.filter(pk=product_id, stock_qty__gte=quantity).exists()

    def reserve(self, product_id: int, quantity: int) -> Reservation:
        """Atomically decrement stock if at least ``quantity`` is available.

        The decrement joins the caller's transaction and is rolled back with
        it. Cache invalidation is scheduled for after commit.

        Raises:
            ProductNotFound: No product row exists.
            InsufficientStock: Stock is below ``quantity``; ``available``
                reports the stock read right after the refused update.
        """
        updated = ProductModel.objects.filter(pk=product_id, stock_qty__gte=quantity).update(
            stock_qty=F("stock_qty") - quantity,
            updated_at=timezone.now(),
        )
        if not updated:
            current = self.available(product_id)
            if current is None:
                raise ProductNotFound(product_id)
            raise InsufficientStock(product_id, current, quantity)

        if self.cache is not None:
            cache = self.cache
            transaction.on_commit(lambda: cache.invalidate(STOCK_REGIONS))
        return Reservation(product_id=product_id, quantity=quantity)


class DjangoRegionPricingLookup:
    """VAT rate per region, read through the ``pricing_config`` cache region."""

    def __init__(self, cache=None):
        self.cache = cache

    def _load(self, region: str) -> Optional[Decimal]:
        return (
            RegionPricingConfigModel.objects.filter(region__iexact=region.strip())
            .values_list("vat_percentage", flat=True)
            .first()
        )

    def get_rate(self, region: str) -> Optional[Decimal]:
        if self.cache is None:
            return self._load(region)
        key = f"vat:{region.strip().upper()}"
        return self.cache.read_through(CacheRegion.PRICING_CONFIG, key, lambda: self._load(region))


def order_from_model(obj: OrderModel) -> Order:
    """Map an ``OrderModel`` (with its lines) to the domain ``Order``."""
    lines = [
        OrderLine(
            product_id=line.product_id,
            product_name=line.product_name,
            quantity=line.quantity,
            unit_price=line.unit_price,
            region=line.region,
            vat_percentage=line.vat_percentage,
            vat_amount=line.vat_amount,
            final_price=line.final_price,
        )
        for line in obj.lines.all()
    ]
    return Order(
        id=obj.id,
        customer_id=obj.customer_id,
        region=obj.region,
        lines=lines,
        status=OrderStatus(obj.status),
        total_price=obj.total_price,
        confirmation_number=obj.confirmation_number,
        contact=ContactInfo(
            contact_name=obj.contact_name,
            phone_number=obj.phone_number,
            delivery_address=obj.delivery_address,
        ),
        internal_id=obj.internal_id,
        created_at=obj.created_at,
        updated_at=obj.updated_at,
    )


class OrderRepository:
    """Repository that persists Order domain objects using Django ORM.

    Writes join the caller's transaction; the domain service wraps them in
    ``DjangoUnitOfWork.atomic()`` so a failed order leaves no row behind.
    """

    def create(self, order: Order) -> Order:
        """Persist a new order and its lines with status CREATED.

        Args:
            order: Domain ``Order`` with priced lines.

        Returns:
            Order: The same instance with ``id``, ``internal_id`` and
            timestamps filled in.
        """
        obj = OrderModel.objects.create(
            customer_id=order.customer_id,
            region=order.region,
            status=OrderStatus.CREATED.value,
            total_price=order.total_price,
            contact_name=order.contact.contact_name,
            phone_number=order.contact.phone_number,
            delivery_address=order.contact.delivery_address,
        )
        OrderLineModel.objects.bulk_create(
            [
                OrderLineModel(
                    order=obj,
                    product_id=line.product_id,
                    position=pos,
                    product_name=line.product_name,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    region=line.region,
                    vat_percentage=line.vat_percentage,
                    vat_amount=line.vat_amount,
                    final_price=line.final_price,
                )
                for pos, line in enumerate(order.lines)
            ]
        )
        order.id = obj.id
        order.internal_id = obj.internal_id
        order.status = OrderStatus.CREATED
        order.created_at = obj.created_at
        order.updated_at = obj.updated_at
        return order

    def mark_confirmed(self, order: Order) -> None:
        now = timezone.now()
        OrderModel.objects.filter(pk=order.id).update(
            status=OrderStatus.CONFIRMED.value,
            confirmation_number=order.confirmation_number,
            updated_at=now,
        )
        order.updated_at = now

    def get(self, order_id) -> Optional[Order]:
        obj = OrderModel.objects.prefetch_related("lines").filter(pk=order_id).first()
        return order_from_model(obj) if obj else None
