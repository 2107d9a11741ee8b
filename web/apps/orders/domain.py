"""Domain models, ports and services for order fulfillment.

This module contains the dataclasses used as DTOs for orders and bulk
results, protocol definitions (ports) for the collaborators of the pipeline
(catalog, inventory ledger, region pricing, confirmation gateway, order
repository, unit of work, cache coordinator) and the domain services that
orchestrate placing orders and quoting prices. Nothing here depends on
Django; concrete adapters live in ``repository``, ``adapters``,
``http_adapters`` and ``cache``.
"""

import logging
from collections import defaultdict
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Callable, Iterable, List, Optional, Protocol

from .errors import (
    ConfirmationFailed,
    InsufficientStock,
    InvalidOrderShape,
    OrderError,
    PricingConfigMissing,
    ProductNotFound,
    RegionMismatch,
    SubOrderCrashed,
)
from .pricing import PricingCalculator

logger = logging.getLogger(__name__)


# ---- Enums ----
class OrderStatus(str, Enum):
    """Lifecycle of an order inside one transaction.

    Only CREATED and CONFIRMED are ever committed; STOCK_RESERVED is an
    in-flight state and ABORTED marks an order whose transaction rolled back.
    """

    CREATED = "CREATED"
    STOCK_RESERVED = "STOCK_RESERVED"
    CONFIRMED = "CONFIRMED"
    ABORTED = "ABORTED"


class CacheRegion(str, Enum):
    """Named cache regions holding read views derived from catalog data."""

    PRODUCTS = "products"
    PRODUCT_DETAILS = "product_details"
    PRODUCT_PRICE = "product_price"
    PRICING_CONFIG = "pricing_config"


# Price views derive from product, stock and VAT data at once, so every
# mutation drops all of them.
CATALOG_REGIONS = frozenset(CacheRegion)
STOCK_REGIONS = frozenset({CacheRegion.PRODUCTS, CacheRegion.PRODUCT_DETAILS})


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class OrderItem:
    """A requested line: product and quantity as submitted by the caller."""

    product_id: Optional[int]
    quantity: Optional[int]


@dataclass(frozen=True)
class ProductSnapshot:
    """Catalog data the pipeline reads about a product.

    Attributes:
        id: Product identifier.
        name: Display name, copied into responses.
        region: Region code the product is sold in.
        price: Base price before VAT.
        currency: ISO currency code of ``price``.
        stock_qty: Stock at read time; informational only.
    """

    id: int
    name: str
    region: str
    price: Decimal
    currency: str
    stock_qty: int = 0


@dataclass(frozen=True)
class OrderLine:
    """A priced order line. Immutable once the order is persisted.

    Attributes:
        product_id: Ordered product.
        product_name: Product name at order time.
        quantity: Units ordered, at least 1.
        unit_price: Base price snapshot, not the live product price.
        region: Region the line was priced for.
        vat_percentage: VAT percentage snapshot.
        vat_amount: VAT per unit.
        final_price: ``(unit_price + vat_amount) * quantity``.
    """

    product_id: int
    product_name: str
    quantity: int
    unit_price: Decimal
    region: str
    vat_percentage: Decimal
    vat_amount: Decimal
    final_price: Decimal


@dataclass(frozen=True)
class ContactInfo:
    contact_name: Optional[str] = None
    phone_number: Optional[str] = None
    delivery_address: Optional[str] = None


@dataclass
class Order:
    """Container for order data.

    Attributes:
        id: Persistent identifier, or None until the order is saved.
        customer_id: Customer placing the order.
        region: Region of the order; every line must belong to it.
        lines: Priced lines in submission order.
        status: Current OrderStatus.
        total_price: Sum of the lines' final prices.
        confirmation_number: Token returned by the confirmation authority.
        contact: Contact and delivery metadata.
        internal_id: Unique, increasing order number assigned by the
            repository; rolled-back orders may leave gaps.
        created_at: Creation timestamp, set by the repository.
        updated_at: Last update timestamp, set by the repository.
    """

    id: object
    customer_id: str
    region: str
    lines: List[OrderLine] = field(default_factory=list)
    status: OrderStatus = OrderStatus.CREATED
    total_price: Decimal = Decimal("0.00")
    confirmation_number: Optional[str] = None
    contact: ContactInfo = field(default_factory=ContactInfo)
    internal_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class OrderRequest:
    """A create request as handed over by the API layer.

    Exactly one of ``items`` (single order) or ``orders`` (bulk, a list of
    line lists) is expected; ``orders`` wins when both are present.
    """

    customer_id: str
    region: str
    items: Optional[List[OrderItem]] = None
    orders: Optional[List[List[OrderItem]]] = None
    contact: ContactInfo = field(default_factory=ContactInfo)

    @property
    def is_bulk(self) -> bool:
        return bool(self.orders)


@dataclass(frozen=True)
class BulkOrderEntry:
    """Outcome of one sub-order of a bulk request."""

    index: int
    success: bool
    order: Optional[Order] = None
    error: Optional[OrderError] = None

    @property
    def message(self) -> str:
        if self.success:
            return "Order processed successfully"
        return self.error.message if self.error else "Order failed"


@dataclass(frozen=True)
class BulkOrderResult:
    """Aggregate outcome of a bulk request, entries in submission order."""

    results: List[BulkOrderEntry]

    @property
    def total_orders(self) -> int:
        return len(self.results)

    @property
    def successful_orders(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed_orders(self) -> int:
        return self.total_orders - self.successful_orders

    @property
    def orders(self) -> List[Order]:
        return [r.order for r in self.results if r.success and r.order is not None]


@dataclass(frozen=True)
class Reservation:
    product_id: int
    quantity: int


@dataclass(frozen=True)
class PriceQuote:
    """Single-line price of a product in its own region."""

    product_id: int
    product_name: str
    region: str
    currency: str
    base_price: Decimal
    vat_percentage: Decimal
    vat_amount: Decimal
    final_price: Decimal


# ---- Ports (DIP) ----
class UnitOfWork(Protocol):
    """Transaction boundary shared by the repository and the ledger.

    ``atomic()`` opens an all-or-nothing scope: when the block raises, every
    write performed through participating adapters is undone. Callbacks
    registered with ``on_commit`` run only after the outermost scope
    commits, and immediately when no scope is open.
    """

    def atomic(self) -> AbstractContextManager: ...

    def on_commit(self, callback: Callable[[], None]) -> None: ...


class CatalogPort(Protocol):
    def get_product(self, product_id: int) -> Optional[ProductSnapshot]: ...


class InventoryLedger(Protocol):
    """Owner of per-product stock counters.

    ``reserve`` is the only authoritative mutation and must be a single
    conditional decrement: it grants the quantity only if current stock is
    at least that quantity, or raises ``InsufficientStock`` /
    ``ProductNotFound`` without changing anything.
    """

    def check_available(self, product_id: int, quantity: int) -> bool: ...

    def available(self, product_id: int) -> Optional[int]: ...

    def reserve(self, product_id: int, quantity: int) -> Reservation: ...


class RegionPricingLookup(Protocol):
    def get_rate(self, region: str) -> Optional[Decimal]: ...


class ConfirmationGateway(Protocol):
    """Confirmation authority: returns a non-empty confirmation number or
    raises ``ConfirmationFailed``."""

    def confirm(self, order_id, total_price: Decimal) -> str: ...


class OrderRepositoryPort(Protocol):
    def create(self, order: Order) -> Order: ...

    def mark_confirmed(self, order: Order) -> None: ...

    def get(self, order_id) -> Optional[Order]: ...


class CachePort(Protocol):
    def invalidate(self, regions: Iterable[CacheRegion]) -> None: ...


# ---- Domain services ----
class OrderService:
    """Domain service that places single and bulk orders.

    One order is one unit of work: product and region checks, VAT pricing,
    persistence, stock reservation and external confirmation either all take
    effect or none does. The service holds no locks of its own; concurrent
    orders for the same product are arbitrated by ``InventoryLedger.reserve``.
    """

    def __init__(
        self,
        catalog: CatalogPort,
        inventory: InventoryLedger,
        pricing: RegionPricingLookup,
        confirmations: ConfirmationGateway,
        orders: OrderRepositoryPort,
        uow: UnitOfWork,
        cache: CachePort,
        calculator: Optional[PricingCalculator] = None,
    ):
        """Initialize the service with its collaborators.

        Args:
            catalog: Source of product region and price data.
            inventory: Ledger used to reserve stock atomically.
            pricing: Lookup of the VAT rate per region.
            confirmations: External confirmation authority.
            orders: Repository persisting orders and lines.
            uow: Transaction boundary shared by ``orders`` and ``inventory``.
            cache: Coordinator invalidating derived read views.
            calculator: VAT calculator; a default one is created if omitted.
        """
        self.catalog = catalog
        self.inventory = inventory
        self.pricing = pricing
        self.confirmations = confirmations
        self.orders = orders
        self.uow = uow
        self.cache = cache
        self.calculator = calculator or PricingCalculator()

    def submit(self, request: OrderRequest):
        """Dispatch a create request to the single or bulk pipeline.

        Returns:
            Order | BulkOrderResult: The confirmed order for a single
            request, the aggregate result for a bulk request.

        Raises:
            InvalidOrderShape: When neither payload is present or a line is
                missing its product or quantity.
            OrderError: Any single-order failure (bulk failures are
                reported per entry instead).
        """
        if request.is_bulk:
            for sub_items in request.orders:
                if not sub_items:
                    raise InvalidOrderShape("Each order in bulk request must contain items")
                self._validate_items(sub_items)
            return self.place_bulk(request.customer_id, request.region, request.orders, request.contact)
        if request.items:
            return self.place_order(request.customer_id, request.region, request.items, request.contact)
        raise InvalidOrderShape(
            "Order request must contain either 'items' for single order or 'orders' for bulk orders"
        )

    def place_order(
        self,
        customer_id: str,
        region: str,
        items: List[OrderItem],
        contact: Optional[ContactInfo] = None,
    ) -> Order:
        """Place one order: validate, price, persist, reserve, confirm.

        Args:
            customer_id: Customer supplied by the authentication layer.
            region: Region of the customer; all products must belong to it.
            items: Requested lines.
            contact: Optional contact and delivery metadata.

        Returns:
            Order: The order in status CONFIRMED with its confirmation
            number, lines and total.

        Raises:
            InvalidOrderShape: Empty order or incomplete line.
            ProductNotFound: A product does not exist.
            RegionMismatch: A product belongs to another region.
            PricingConfigMissing: No VAT configuration for the region.
            InsufficientStock: A reservation was refused.
            ConfirmationFailed: The confirmation authority failed.
        """
        if not items:
            raise InvalidOrderShape("Order must contain at least one item")
        self._validate_items(items)

        order = Order(id=None, customer_id=customer_id, region=region, contact=contact or ContactInfo())
        logger.info(
            "placing order",
            extra={"lines": len(items), "order_customer": customer_id, "order_region": region},
        )
        try:
            with self.uow.atomic():
                order.lines = self._price_lines(region, items)
                order.total_price = sum((line.final_price for line in order.lines), Decimal("0.00"))

                order = self.orders.create(order)

                for line in order.lines:
                    self.inventory.reserve(line.product_id, line.quantity)
                order.status = OrderStatus.STOCK_RESERVED

                order.confirmation_number = self._confirm(order)
                order.status = OrderStatus.CONFIRMED
                self.orders.mark_confirmed(order)

                self.uow.on_commit(lambda: self.cache.invalidate(CATALOG_REGIONS))
        except OrderError as exc:
            order.status = OrderStatus.ABORTED
            logger.warning(
                "order aborted",
                extra={"order_id": str(order.id) if order.id else None, "error": exc.code},
            )
            raise

        logger.info(
            "order confirmed",
            extra={
                "order_id": str(order.id),
                "confirmation_number": order.confirmation_number,
                "total_price": str(order.total_price),
            },
        )
        return order

    def place_bulk(
        self,
        customer_id: str,
        region: str,
        sub_orders: List[List[OrderItem]],
        contact: Optional[ContactInfo] = None,
    ) -> BulkOrderResult:
        """Place independent sub-orders sequentially.

        Requested quantities are aggregated per product and checked once per
        product as a fast path. Products whose aggregate does not fit are
        re-checked per sub-order, so a sub-order that cannot possibly be
        served is rejected without opening a transaction while its siblings
        still run. Every sub-order that passes goes through ``place_order``
        in its own unit of work; a failure is recorded and does not affect
        the others.

        Args:
            customer_id: Customer supplied by the authentication layer.
            region: Region shared by all sub-orders.
            sub_orders: Line lists, one per sub-order.
            contact: Contact metadata applied to every sub-order.

        Returns:
            BulkOrderResult: One entry per sub-order in submission order.
        """
        logger.info(
            "placing bulk orders",
            extra={"sub_orders": len(sub_orders), "order_customer": customer_id, "order_region": region},
        )
        contended = self._contended_products(sub_orders)

        results: List[BulkOrderEntry] = []
        for index, items in enumerate(sub_orders):
            try:
                self._fast_reject(items, contended)
                order = self.place_order(customer_id, region, items, contact)
            except OrderError as exc:
                logger.warning("bulk sub-order failed", extra={"index": index, "error": exc.code})
                results.append(BulkOrderEntry(index=index, success=False, error=exc))
            except Exception as exc:
                # earlier sub-orders are committed; the batch must report them
                logger.exception("bulk sub-order crashed", extra={"index": index})
                results.append(BulkOrderEntry(index=index, success=False, error=SubOrderCrashed(exc)))
            else:
                results.append(BulkOrderEntry(index=index, success=True, order=order))

        result = BulkOrderResult(results=results)
        logger.info(
            "bulk orders processed",
            extra={
                "total_orders": result.total_orders,
                "successful_orders": result.successful_orders,
                "failed_orders": result.failed_orders,
            },
        )
        return result

    # ---- helpers ----
    @staticmethod
    def _validate_items(items: List[OrderItem]) -> None:
        for it in items:
            if it.product_id is None or it.quantity is None:
                raise InvalidOrderShape("Product ID and quantity are required for each item")
            if it.quantity < 1:
                raise InvalidOrderShape("Quantity must be at least 1")

    def _price_lines(self, region: str, items: List[OrderItem]) -> List[OrderLine]:
        products = []
        for it in items:
            product = self.catalog.get_product(it.product_id)
            if product is None:
                raise ProductNotFound(it.product_id)
            if product.region.casefold() != region.casefold():
                raise RegionMismatch(product.id, product.region, region)
            products.append(product)

        vat_percentage = self.pricing.get_rate(region)
        if vat_percentage is None:
            raise PricingConfigMissing(region)

        lines = []
        for it, product in zip(items, products):
            priced = self.calculator.line(product.price, vat_percentage, it.quantity)
            lines.append(
                OrderLine(
                    product_id=product.id,
                    product_name=product.name,
                    quantity=it.quantity,
                    unit_price=product.price,
                    region=region,
                    vat_percentage=vat_percentage,
                    vat_amount=priced.vat_amount,
                    final_price=priced.final_price,
                )
            )
        return lines

    def _confirm(self, order: Order) -> str:
        try:
            number = self.confirmations.confirm(order.id, order.total_price)
        except ConfirmationFailed:
            raise
        except Exception as exc:
            raise ConfirmationFailed(order.id, f"{type(exc).__name__}: {exc}") from exc
        if not isinstance(number, str) or not number.strip():
            raise ConfirmationFailed(order.id, "empty confirmation number")
        return number.strip()

    def _contended_products(self, sub_orders: List[List[OrderItem]]) -> set:
        requested: dict = defaultdict(int)
        for items in sub_orders:
            for it in items:
                if it.product_id is None or not it.quantity:
                    continue
                requested[it.product_id] += it.quantity
        contended = set()
        for product_id, quantity in requested.items():
            if not self.inventory.check_available(product_id, quantity):
                logger.warning(
                    "aggregate stock check failed",
                    extra={"product_id": product_id, "requested": quantity},
                )
                contended.add(product_id)
        return contended

    def _fast_reject(self, items: List[OrderItem], contended: set) -> None:
        if not contended:
            return
        requested: dict = defaultdict(int)
        for it in items:
            if it.product_id in contended and it.quantity:
                requested[it.product_id] += it.quantity
        for product_id, quantity in requested.items():
            available = self.inventory.available(product_id)
            # unknown products are reported by the pipeline itself
            if available is not None and available < quantity:
                raise InsufficientStock(product_id, available, quantity)


class PriceQuoteService:
    """Quotes the VAT-inclusive price of a single product in its own region."""

    def __init__(
        self,
        catalog: CatalogPort,
        pricing: RegionPricingLookup,
        calculator: Optional[PricingCalculator] = None,
    ):
        self.catalog = catalog
        self.pricing = pricing
        self.calculator = calculator or PricingCalculator()

    def quote(self, product_id: int) -> PriceQuote:
        """Return the price quote of a product.

        Raises:
            ProductNotFound: The product does not exist.
            PricingConfigMissing: The product's region has no VAT rate.
        """
        product = self.catalog.get_product(product_id)
        if product is None:
            raise ProductNotFound(product_id)
        vat_percentage = self.pricing.get_rate(product.region)
        if vat_percentage is None:
            raise PricingConfigMissing(product.region)
        vat_amount, final_price = self.calculator.compute(product.price, vat_percentage)
        return PriceQuote(
            product_id=product.id,
            product_name=product.name,
            region=product.region,
            currency=product.currency,
            base_price=product.price,
            vat_percentage=vat_percentage,
            vat_amount=vat_amount,
            final_price=final_price,
        )
