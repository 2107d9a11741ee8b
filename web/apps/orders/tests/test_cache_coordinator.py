from decimal import Decimal

import pytest
from django.core.cache import caches

from apps.orders.cache import CacheCoordinator, get_cache_coordinator
from apps.orders.domain import CATALOG_REGIONS, CacheRegion
from apps.orders.models import ProductModel, RegionPricingConfigModel


def fill_all(value="v"):
    for region in CacheRegion:
        caches[region.value].set("k", value)


def test_invalidate_clears_only_named_regions():
    fill_all()
    CacheCoordinator().invalidate({CacheRegion.PRODUCTS, CacheRegion.PRODUCT_PRICE})

    assert caches["products"].get("k") is None
    assert caches["product_price"].get("k") is None
    assert caches["product_details"].get("k") == "v"
    assert caches["pricing_config"].get("k") == "v"


def test_invalidate_is_idempotent():
    fill_all()
    coordinator = CacheCoordinator()
    coordinator.invalidate(CATALOG_REGIONS)
    coordinator.invalidate(CATALOG_REGIONS)
    assert all(caches[r.value].get("k") is None for r in CacheRegion)


def test_read_through_caches_loaded_value():
    calls = []

    def loader():
        calls.append(1)
        return Decimal("8.25")

    coordinator = CacheCoordinator(timeout=60)
    assert coordinator.read_through(CacheRegion.PRICING_CONFIG, "vat:US", loader) == Decimal("8.25")
    assert coordinator.read_through(CacheRegion.PRICING_CONFIG, "vat:US", loader) == Decimal("8.25")
    assert len(calls) == 1


def test_read_through_does_not_cache_misses():
    calls = []

    def loader():
        calls.append(1)
        return None

    coordinator = CacheCoordinator()
    assert coordinator.read_through(CacheRegion.PRODUCT_DETAILS, "product:1", loader) is None
    assert coordinator.read_through(CacheRegion.PRODUCT_DETAILS, "product:1", loader) is None
    assert len(calls) == 2


def test_shared_coordinator_is_a_singleton():
    assert get_cache_coordinator() is get_cache_coordinator()


@pytest.mark.django_db
def test_catalog_writes_invalidate_after_commit(django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks(execute=True):
        product = ProductModel.objects.create(
            name="Valve", region="US", price=Decimal("5.00"), currency="USD", stock_qty=1
        )
    fill_all()

    with django_capture_on_commit_callbacks(execute=True):
        product.price = Decimal("6.00")
        product.save()
    assert all(caches[r.value].get("k") is None for r in CacheRegion)

    fill_all()
    with django_capture_on_commit_callbacks(execute=True):
        RegionPricingConfigModel.objects.create(region="us", vat_percentage=Decimal("7.00"))
    assert caches["pricing_config"].get("k") is None


@pytest.mark.django_db
def test_vat_region_is_normalized_on_save():
    cfg = RegionPricingConfigModel.objects.create(region=" eu ", vat_percentage=Decimal("19.00"))
    assert cfg.region == "EU"
