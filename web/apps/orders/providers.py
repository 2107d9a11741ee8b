"""Service provider helpers for wiring the domain services with ports.

``get_order_service`` returns an ``OrderService`` backed by the Django ORM
adapters. The confirmation authority is the HTTP client when
``settings.USE_HTTP_ADAPTERS`` is truthy and the in-process stub otherwise,
which is what tests and local development use.
"""

from django.conf import settings

from .adapters import ConfirmationStub
from .cache import get_cache_coordinator
from .domain import OrderService, PriceQuoteService
from .http_adapters import HttpConfirmationClient
from .repository import (
    CachedCatalog,
    DjangoCatalog,
    DjangoInventoryLedger,
    DjangoRegionPricingLookup,
    DjangoUnitOfWork,
    OrderRepository,
)


def get_confirmation_gateway():
    if getattr(settings, "USE_HTTP_ADAPTERS", False):
        return HttpConfirmationClient()
    return ConfirmationStub()


def get_order_service() -> OrderService:
    """Return an OrderService wired with the database adapters.

    Returns:
        OrderService: A service instance with appropriate ports.
    """
    cache = get_cache_coordinator()
    return OrderService(
        catalog=DjangoCatalog(),
        inventory=DjangoInventoryLedger(cache=cache),
        pricing=DjangoRegionPricingLookup(cache=cache),
        confirmations=get_confirmation_gateway(),
        orders=OrderRepository(),
        uow=DjangoUnitOfWork(),
        cache=cache,
    )


def get_price_quote_service() -> PriceQuoteService:
    cache = get_cache_coordinator()
    return PriceQuoteService(
        catalog=CachedCatalog(cache),
        pricing=DjangoRegionPricingLookup(cache=cache),
    )
