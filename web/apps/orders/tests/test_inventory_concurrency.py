"""Concurrent reservations against the in-memory ledger.

Threads are released together by a barrier so reservations really race on
the same product counter.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from apps.orders.adapters import InMemoryInventoryLedger
from apps.orders.domain import OrderItem
from apps.orders.errors import InsufficientStock, ProductNotFound

from memory_pipeline import build_memory_pipeline


def race(n, fn):
    barrier = threading.Barrier(n)

    def run(i):
        barrier.wait()
        try:
            return fn(i)
        except Exception as exc:  # collected for assertions
            return exc

    with ThreadPoolExecutor(max_workers=n) as pool:
        return list(pool.map(run, range(n)))


def test_reserve_never_oversells():
    ledger = InMemoryInventoryLedger({1: 100})
    outcomes = race(32, lambda i: ledger.reserve(1, 7))

    granted = [o for o in outcomes if not isinstance(o, Exception)]
    refused = [o for o in outcomes if isinstance(o, InsufficientStock)]
    assert len(granted) == 14
    assert len(refused) == 18
    assert ledger.available(1) == 2


def test_reserve_unknown_product():
    with pytest.raises(ProductNotFound):
        InMemoryInventoryLedger({}).reserve(42, 1)


def test_two_orders_of_six_against_ten():
    p = build_memory_pipeline()
    outcomes = race(2, lambda i: p.service.place_order(f"cust-{i}", "US", [OrderItem(1, 6)]))

    failures = [o for o in outcomes if isinstance(o, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], InsufficientStock)
    assert failures[0].requested == 6
    assert failures[0].available in (4, 10)
    assert p.ledger.available(1) == 4
    assert len(p.repo.all()) == 1


def test_many_concurrent_orders_consume_exact_stock():
    p = build_memory_pipeline(stock={1: 10, 2: 50, 3: 5})
    outcomes = race(16, lambda i: p.service.place_order(f"cust-{i}", "US", [OrderItem(1, 1)]))

    assert sum(1 for o in outcomes if not isinstance(o, Exception)) == 10
    assert p.ledger.available(1) == 0
    assert len(p.repo.all()) == 10
