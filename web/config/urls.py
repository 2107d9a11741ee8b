"""
Root URL configuration: orders API, product price quotes and health.
"""

from django.urls import include, path

from apps.orders.views import ProductPriceView

urlpatterns = [
    path("api/orders/", include("apps.orders.urls")),
    path("api/products/<int:product_id>/price", ProductPriceView.as_view(), name="product-price"),
    path("", include("apps.monitoring.urls")),
]
