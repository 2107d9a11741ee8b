"""Unit tests for the OrderService domain orchestration.

These tests validate placing single orders under different conditions:
happy path, shape violations, unknown products, region mismatch, missing
VAT configuration, insufficient stock and confirmation failures. In-memory
ports are used to deterministically drive outcomes and to observe rollback.
"""

from decimal import Decimal

import pytest

from apps.orders.domain import CATALOG_REGIONS, STOCK_REGIONS, OrderItem, OrderRequest, OrderStatus
from apps.orders.errors import (
    ConfirmationFailed,
    InsufficientStock,
    InvalidOrderShape,
    PricingConfigMissing,
    ProductNotFound,
    RegionMismatch,
)

from memory_pipeline import build_memory_pipeline


class FailingConfirmations:
    def confirm(self, order_id, total_price):
        raise ConfirmationFailed(order_id, "authority down")


class CrashingConfirmations:
    def confirm(self, order_id, total_price):
        raise TimeoutError("no answer")


class BlankConfirmations:
    def confirm(self, order_id, total_price):
        return "  "


def test_place_order_ok(pipeline):
    """Happy path: priced, reserved, confirmed; stock goes 10 -> 8."""
    order = pipeline.service.place_order("cust-1", "US", [OrderItem(1, 2)])

    assert order.status == OrderStatus.CONFIRMED
    assert order.confirmation_number.startswith("SAP")
    assert order.id is not None and order.internal_id == 1
    line = order.lines[0]
    assert line.unit_price == Decimal("100.00")
    assert line.vat_percentage == Decimal("8.25")
    assert line.vat_amount == Decimal("8.25")
    assert line.final_price == Decimal("216.50")
    assert order.total_price == Decimal("216.50")
    assert pipeline.ledger.available(1) == 8
    assert pipeline.repo.get(order.id) is order


def test_total_is_sum_of_lines(pipeline):
    order = pipeline.service.place_order("cust-1", "US", [OrderItem(1, 1), OrderItem(2, 3)])
    assert order.total_price == sum(line.final_price for line in order.lines)
    # 19.99 * 1.0825 = 21.639175 -> 21.64 per unit, 64.92 for three
    assert order.lines[1].final_price == Decimal("64.92")


def test_region_is_case_insensitive(pipeline):
    order = pipeline.service.place_order("cust-1", "us", [OrderItem(1, 1)])
    assert order.status == OrderStatus.CONFIRMED


def test_place_order_empty(pipeline):
    with pytest.raises(InvalidOrderShape):
        pipeline.service.place_order("cust-1", "US", [])


@pytest.mark.parametrize(
    "item, message",
    [
        (OrderItem(None, 1), "Product ID and quantity are required for each item"),
        (OrderItem(1, None), "Product ID and quantity are required for each item"),
        (OrderItem(1, 0), "Quantity must be at least 1"),
    ],
)
def test_place_order_rejects_incomplete_lines(pipeline, item, message):
    with pytest.raises(InvalidOrderShape) as e:
        pipeline.service.place_order("cust-1", "US", [item])
    assert e.value.message == message


def test_unknown_product(pipeline):
    with pytest.raises(ProductNotFound) as e:
        pipeline.service.place_order("cust-1", "US", [OrderItem(999, 1)])
    assert e.value.details == {"product_id": 999}
    assert pipeline.repo.all() == []


def test_region_mismatch(pipeline):
    with pytest.raises(RegionMismatch):
        pipeline.service.place_order("cust-1", "US", [OrderItem(1, 1), OrderItem(3, 1)])
    assert pipeline.ledger.available(1) == 10


def test_missing_vat_configuration():
    p = build_memory_pipeline(rates={"EU": "19"})
    with pytest.raises(PricingConfigMissing):
        p.service.place_order("cust-1", "US", [OrderItem(1, 1)])


def test_insufficient_stock_rolls_back_earlier_lines(pipeline):
    """All-or-nothing: the reservation of line 1 is released when line 2 fails."""
    with pytest.raises(InsufficientStock) as e:
        pipeline.service.place_order("cust-1", "US", [OrderItem(2, 5), OrderItem(1, 11)])

    assert e.value.available == 10 and e.value.requested == 11
    assert pipeline.ledger.available(2) == 50
    assert pipeline.ledger.available(1) == 10
    assert pipeline.repo.all() == []
    assert pipeline.cache.calls == []


@pytest.mark.parametrize("gateway", [FailingConfirmations(), CrashingConfirmations(), BlankConfirmations()])
def test_confirmation_failure_restores_stock(gateway):
    p = build_memory_pipeline(confirmations=gateway)
    with pytest.raises(ConfirmationFailed):
        p.service.place_order("cust-1", "US", [OrderItem(1, 2)])

    assert p.ledger.available(1) == 10
    assert p.repo.all() == []
    assert p.cache.calls == []


def test_caches_invalidated_after_commit(pipeline):
    pipeline.service.place_order("cust-1", "US", [OrderItem(1, 1)])
    assert STOCK_REGIONS in pipeline.cache.calls
    assert CATALOG_REGIONS in pipeline.cache.calls


def test_submit_without_items_or_orders(pipeline):
    with pytest.raises(InvalidOrderShape) as e:
        pipeline.service.submit(OrderRequest(customer_id="cust-1", region="US"))
    assert "either 'items'" in e.value.message


def test_submit_prefers_bulk_when_both_given(pipeline):
    req = OrderRequest(
        customer_id="cust-1",
        region="US",
        items=[OrderItem(1, 1)],
        orders=[[OrderItem(2, 1)], [OrderItem(2, 2)]],
    )
    result = pipeline.service.submit(req)
    assert result.total_orders == 2
    assert pipeline.ledger.available(1) == 10
    assert pipeline.ledger.available(2) == 47


def test_submit_rejects_empty_sub_order(pipeline):
    req = OrderRequest(customer_id="cust-1", region="US", orders=[[OrderItem(1, 1)], []])
    with pytest.raises(InvalidOrderShape):
        pipeline.service.submit(req)
    assert pipeline.repo.all() == []
