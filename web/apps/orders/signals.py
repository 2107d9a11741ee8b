"""Catalog change hooks.

Products and region VAT rows are written by collaborators outside the order
pipeline (admin tools, imports). Any such write drops every price-derived
cache region once the surrounding transaction commits.

``QuerySet.update`` bypasses these signals; the stock ledger schedules its
own invalidation for that reason.
"""

import logging

from django.db import transaction
from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from .cache import get_cache_coordinator
from .domain import CATALOG_REGIONS
from .models import ProductModel, RegionPricingConfigModel

logger = logging.getLogger(__name__)


@receiver(post_save, sender=ProductModel)
@receiver(post_delete, sender=ProductModel)
@receiver(post_save, sender=RegionPricingConfigModel)
@receiver(post_delete, sender=RegionPricingConfigModel)
def invalidate_catalog_views(sender, instance, **kwargs):
    logger.debug("catalog row changed", extra={"model": sender.__name__, "pk": instance.pk})
    transaction.on_commit(lambda: get_cache_coordinator().invalidate(CATALOG_REGIONS))
