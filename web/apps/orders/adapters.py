"""In-process adapters for the orders domain ports.

These implement the ports of ``domain`` without a database or network
calls. They are intended for unit tests and local development where
deterministic behavior is useful and external services are not required.
The in-memory ledger gives the same guarantee as the database one: a
reservation is a single conditional decrement under a per-product lock.
"""

import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from .domain import (
    STOCK_REGIONS,
    CachePort,
    Order,
    OrderStatus,
    ProductSnapshot,
    Reservation,
)
from .errors import ConfirmationFailed, InsufficientStock, ProductNotFound


class InMemoryUnitOfWork:
    """Thread-local transaction scope with undo journaling.

    Participating adapters call ``record_undo`` after each write; when the
    outermost ``atomic()`` block raises, the journal is replayed in reverse.
    Nested ``atomic()`` blocks join the enclosing scope.
    """

    def __init__(self):
        self._local = threading.local()

    @property
    def active(self) -> bool:
        return getattr(self._local, "undo", None) is not None

    @contextmanager
    def atomic(self):
        if self.active:
            yield
            return
        self._local.undo = []
        self._local.commit_hooks = []
        try:
            yield
        except BaseException:
            undo = self._local.undo
            self._local.undo = None
            self._local.commit_hooks = None
            for action in reversed(undo):
                action()
            raise
        hooks = self._local.commit_hooks
        self._local.undo = None
        self._local.commit_hooks = None
        for hook in hooks:
            hook()

    def record_undo(self, action: Callable[[], None]) -> None:
        if self.active:
            self._local.undo.append(action)

    def on_commit(self, callback: Callable[[], None]) -> None:
        if self.active:
            self._local.commit_hooks.append(callback)
        else:
            callback()


class InMemoryCatalog:
    """Product data keyed by id. Stock lives in the ledger, not here."""

    def __init__(self, products: Optional[List[ProductSnapshot]] = None):
        self._products: Dict[int, ProductSnapshot] = {p.id: p for p in products or []}

    def add(self, product: ProductSnapshot) -> None:
        self._products[product.id] = product

    def get_product(self, product_id: int) -> Optional[ProductSnapshot]:
        return self._products.get(product_id)


class InMemoryInventoryLedger:
    """Stock counters guarded by one lock per product.

    ``reserve`` checks and decrements under the product's lock, so two
    threads can never both be granted the last units.
    """

    def __init__(
        self,
        stock: Optional[Dict[int, int]] = None,
        uow: Optional[InMemoryUnitOfWork] = None,
        cache: Optional[CachePort] = None,
    ):
        self._stock: Dict[int, int] = dict(stock or {})
        self._locks: Dict[int, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self.uow = uow
        self.cache = cache

    def _lock_for(self, product_id: int) -> threading.Lock:
        with self._registry_lock:
            return self._locks.setdefault(product_id, threading.Lock())

    def set_stock(self, product_id: int, quantity: int) -> None:
        with self._lock_for(product_id):
            self._stock[product_id] = quantity

    def available(self, product_id: int) -> Optional[int]:
        return self._stock.get(product_id)

    def check_available(self, product_id: int, quantity: int) -> bool:
        current = self._stock.get(product_id)
        return current is not None and current >= quantity

    def reserve(self, product_id: int, quantity: int) -> Reservation:
        """Atomically decrement stock if at least ``quantity`` is available.

        Raises:
            ProductNotFound: No counter exists for the product.
            InsufficientStock: Current stock is below ``quantity``.
        """
        with self._lock_for(product_id):
            current = self._stock.get(product_id)
            if current is None:
                raise ProductNotFound(product_id)
            if current < quantity:
                raise InsufficientStock(product_id, current, quantity)
            self._stock[product_id] = current - quantity

        if self.uow is not None:
            self.uow.record_undo(lambda: self._release(product_id, quantity))
            if self.cache is not None:
                self.uow.on_commit(lambda: self.cache.invalidate(STOCK_REGIONS))
        return Reservation(product_id=product_id, quantity=quantity)

    def _release(self, product_id: int, quantity: int) -> None:
        with self._lock_for(product_id):
            self._stock[product_id] = self._stock.get(product_id, 0) + quantity


class InMemoryOrderRepository:
    """Order store participating in an ``InMemoryUnitOfWork``."""

    def __init__(self, uow: Optional[InMemoryUnitOfWork] = None):
        self._orders: Dict[uuid.UUID, Order] = {}
        self._lock = threading.Lock()
        self._next_internal_id = 1
        self.uow = uow

    def create(self, order: Order) -> Order:
        now = datetime.now(timezone.utc)
        with self._lock:
            order.id = uuid.uuid4()
            order.internal_id = self._next_internal_id
            self._next_internal_id += 1
            order.status = OrderStatus.CREATED
            order.created_at = order.updated_at = now
            self._orders[order.id] = order
        if self.uow is not None:
            self.uow.record_undo(lambda: self._discard(order.id))
        return order

    def mark_confirmed(self, order: Order) -> None:
        with self._lock:
            order.updated_at = datetime.now(timezone.utc)
            self._orders[order.id] = order

    def get(self, order_id) -> Optional[Order]:
        return self._orders.get(order_id)

    def all(self) -> List[Order]:
        return list(self._orders.values())

    def _discard(self, order_id) -> None:
        with self._lock:
            self._orders.pop(order_id, None)


class StaticRegionPricing:
    """Region VAT rates from a fixed mapping; region codes are case-insensitive."""

    def __init__(self, rates: Optional[Dict[str, Decimal]] = None):
        self._rates = {k.upper(): Decimal(str(v)) for k, v in (rates or {}).items()}

    def get_rate(self, region: str) -> Optional[Decimal]:
        return self._rates.get(region.upper())


class ConfirmationStub:
    """Stub implementation of ``ConfirmationGateway``.

    Confirms any order with a positive total and returns a number shaped
    like the confirmation authority's (``SAP`` followed by 8 hex digits).
    Non-positive totals are refused.
    """

    def confirm(self, order_id, total_price: Decimal) -> str:
        """Confirm an order.

        Args:
            order_id: Durable identifier of the order.
            total_price: VAT-inclusive order total.

        Returns:
            str: The generated confirmation number.

        Raises:
            ConfirmationFailed: When ``total_price`` is not positive.
        """
        if total_price is None or total_price <= 0:
            raise ConfirmationFailed(order_id, "total price must be positive")
        return "SAP" + uuid.uuid4().hex[:8].upper()
