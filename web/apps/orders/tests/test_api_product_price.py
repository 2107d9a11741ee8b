from decimal import Decimal

import pytest

from apps.orders.cache import get_cache_coordinator
from apps.orders.domain import CATALOG_REGIONS
from apps.orders.models import ProductModel

PRICE_URL = "/api/products/{pid}/price"


@pytest.mark.django_db
def test_price_quote(client, us_product, us_vat):
    r = client.get(PRICE_URL.format(pid=us_product.id))
    assert r.status_code == 200
    assert r.json() == {
        "product_id": us_product.id,
        "product_name": "Hydraulic hose",
        "region": "US",
        "currency": "USD",
        "base_price": "100.00",
        "vat_percentage": "8.25",
        "vat_amount": "8.25",
        "final_price": "108.25",
    }


@pytest.mark.django_db
def test_price_quote_is_served_from_cache_until_invalidated(client, us_product, us_vat):
    url = PRICE_URL.format(pid=us_product.id)
    assert client.get(url).json()["final_price"] == "108.25"

    # bulk update bypasses model signals, so the cached quote survives
    ProductModel.objects.filter(pk=us_product.pk).update(price=Decimal("200.00"))
    assert client.get(url).json()["final_price"] == "108.25"

    get_cache_coordinator().invalidate(CATALOG_REGIONS)
    assert client.get(url).json()["final_price"] == "216.50"


@pytest.mark.django_db
def test_price_quote_unknown_product(client):
    r = client.get(PRICE_URL.format(pid=123456))
    assert r.status_code == 404
    assert r.json()["error"] == "PRODUCT_NOT_FOUND"


@pytest.mark.django_db
def test_price_quote_without_vat_configuration(client, us_product):
    r = client.get(PRICE_URL.format(pid=us_product.id))
    assert r.status_code == 404
    assert r.json()["error"] == "PRICING_CONFIG_MISSING"
