# Makes ``apps``, ``config`` and ``gateway`` importable when pytest runs from web/
import sys
from decimal import Decimal
from pathlib import Path

import pytest
from django.core.cache import caches

BASE_DIR = Path(__file__).resolve().parent  # .../web
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

CACHE_ALIASES = ("default", "products", "product_details", "product_price", "pricing_config")


@pytest.fixture(autouse=True)
def use_stubs_for_tests(settings):
    settings.USE_HTTP_ADAPTERS = False


@pytest.fixture(autouse=True)
def clear_caches():
    for alias in CACHE_ALIASES:
        caches[alias].clear()
    yield


@pytest.fixture
def caller_headers():
    return {"HTTP_X_CUSTOMER_ID": "cust-1", "HTTP_X_REGION": "US"}


@pytest.fixture
def us_vat(db):
    from apps.orders.models import RegionPricingConfigModel

    return RegionPricingConfigModel.objects.create(region="US", vat_percentage=Decimal("8.25"))


@pytest.fixture
def us_product(db):
    from apps.orders.models import ProductModel

    return ProductModel.objects.create(
        name="Hydraulic hose", region="US", price=Decimal("100.00"), currency="USD", stock_qty=10
    )


@pytest.fixture
def eu_product(db):
    from apps.orders.models import ProductModel

    return ProductModel.objects.create(
        name="Fitting", region="EU", price=Decimal("20.00"), currency="EUR", stock_qty=5
    )
