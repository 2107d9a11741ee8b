"""HTTP views for the orders app.

Views are kept small: they validate requests (via Pydantic), map them to
domain DTOs, delegate to the domain services and translate the outcome
(or the ``OrderError`` raised) into an HTTP response.

The views obtain configured services from ``providers``. Whether the
confirmation authority is reached over HTTP or replaced by the in-process
stub is a settings decision (``USE_HTTP_ADAPTERS``) invisible here.

Idempotency: when an ``Idempotency-Key`` header is provided, the create
endpoint stores the first response. Retries with the same payload get the
stored response back with ``Idempotent-Replay: true``; a different payload
gets 409 ``IDEMPOTENCY_CONFLICT`` and a retry racing the first request gets
409 ``IDEMPOTENCY_IN_PROGRESS``.
"""

import logging

from django.core.paginator import Paginator
from pydantic import ValidationError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from .cache import get_cache_coordinator
from .domain import CacheRegion, Order
from .errors import InvalidOrderShape, OrderError
from .idempotency import (
    IdempotencyConflict,
    finalize,
    get_or_create_idempotent,
    is_in_progress,
    release,
    request_fingerprint,
)
from .models import OrderModel
from .providers import get_order_service, get_price_quote_service
from .repository import OrderRepository, order_from_model
from .schemas import BulkOrderResultOut, CreateOrderDTO, OrderOut, PriceQuoteOut

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "INVALID_ORDER_SHAPE": status.HTTP_400_BAD_REQUEST,
    "REGION_MISMATCH": status.HTTP_400_BAD_REQUEST,
    "INVALID_PRICING_INPUT": status.HTTP_400_BAD_REQUEST,
    "PRODUCT_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "PRICING_CONFIG_MISSING": status.HTTP_404_NOT_FOUND,
    "INSUFFICIENT_STOCK": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "CONFIRMATION_FAILED": status.HTTP_502_BAD_GATEWAY,
    "INTERNAL_ERROR": status.HTTP_500_INTERNAL_SERVER_ERROR,
}

MAX_PAGE_SIZE = 100


def error_body(code: str, message: str) -> dict:
    return {"error": code, "message": message, "retryable": False, "details": {}}


def _error_response(exc: OrderError) -> Response:
    return Response(exc.to_dict(), status=ERROR_STATUS.get(exc.code, status.HTTP_400_BAD_REQUEST))


def _int_param(request, name: str, default: int) -> int:
    try:
        return int(request.GET.get(name, default))
    except (TypeError, ValueError):
        return default


class OrdersPingView(APIView):
    """Liveness endpoint for the orders module."""

    def get(self, request):
        return Response({"ok": True})


class OrdersCollectionView(APIView):
    """List orders (GET) and place single or bulk orders (POST)."""

    throttle_classes = [ScopedRateThrottle]

    def get_throttles(self):
        # DRF evaluates throttles in initial(), before get/post
        self.throttle_scope = "orders_list" if self.request.method == "GET" else "orders_create"
        return [throttle() for throttle in self.throttle_classes]

    def get(self, request):
        """Return a page of orders, newest first.

        Query params ``region`` (case-insensitive) and ``customer_id``
        filter the listing; ``page`` and ``page_size`` paginate it.
        """
        qs = OrderModel.objects.prefetch_related("lines").order_by("-created_at", "-internal_id")
        region = request.GET.get("region")
        if region:
            qs = qs.filter(region__iexact=region)
        customer_id = request.GET.get("customer_id")
        if customer_id:
            qs = qs.filter(customer_id=customer_id)

        page_size = min(max(_int_param(request, "page_size", 20), 1), MAX_PAGE_SIZE)
        p = Paginator(qs, page_size)
        page_obj = p.get_page(_int_param(request, "page", 1))

        results = [OrderOut.from_domain(order_from_model(o)).model_dump(mode="json") for o in page_obj.object_list]
        return Response(
            {
                "count": p.count,
                "page": page_obj.number,
                "page_size": page_size,
                "results": results,
            },
            status=status.HTTP_200_OK,
        )

    def post(self, request):
        """Place an order or a batch of orders for the calling customer.

        Args:
            request (Request): DRF request with JSON body, the forwarded
                caller headers and an optional ``Idempotency-Key`` header.

        Returns:
            Response: One of the following responses.
            - 201 with the confirmed order (single) or the bulk summary
              when at least one sub-order succeeded.
            - 422 with the bulk summary when every sub-order failed.
            - 401 ``UNAUTHENTICATED`` without caller headers.
            - 4xx/502 with the ``OrderError`` descriptor, see ``ERROR_STATUS``.
            - 409 on idempotency conflicts, replayed body on retries.
            - 500 ``INTERNAL_ERROR`` for unexpected failures.
        """
        caller = getattr(request, "caller", None)
        if caller is None:
            return Response(
                error_body("UNAUTHENTICATED", "Customer and region headers are required"),
                status=status.HTTP_401_UNAUTHORIZED,
            )

        # 1) Pydantic validation
        try:
            dto = CreateOrderDTO.model_validate(request.data)
        except ValidationError as e:
            exc = InvalidOrderShape(f"Invalid order payload: {e.error_count()} validation error(s)")
            body = exc.to_dict()
            body["details"]["errors"] = [
                {"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors(include_url=False)
            ]
            return Response(body, status=status.HTTP_400_BAD_REQUEST)

        # 2) Idempotency get-or-create
        rec = None
        idem_key = request.headers.get("Idempotency-Key")
        if idem_key:
            fingerprint = request_fingerprint(caller.customer_id, caller.region, request.data)
            try:
                existing, rec = get_or_create_idempotent(idem_key, fingerprint)
            except IdempotencyConflict:
                return Response(
                    error_body("IDEMPOTENCY_CONFLICT", "Idempotency-Key was used with a different request"),
                    status=status.HTTP_409_CONFLICT,
                )
            if existing:
                if is_in_progress(rec):
                    return Response(
                        error_body("IDEMPOTENCY_IN_PROGRESS", "A request with this Idempotency-Key is in progress"),
                        status=status.HTTP_409_CONFLICT,
                    )
                resp = Response(rec.response_body, status=rec.response_status)
                resp["Idempotent-Replay"] = "true"
                return resp

        # 3) Domain
        service = get_order_service()
        try:
            outcome = service.submit(dto.to_domain(caller.customer_id, caller.region))
        except OrderError as exc:
            resp = _error_response(exc)
            if rec:
                finalize(rec, resp.status_code, resp.data)
            return resp
        except Exception:
            logger.exception("unexpected error while placing order")
            if rec:
                release(rec)
            return Response(
                error_body("INTERNAL_ERROR", "Unexpected error while placing the order"),
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        # 4) Response
        order_id = None
        if isinstance(outcome, Order):
            body = OrderOut.from_domain(outcome).model_dump(mode="json")
            status_code = status.HTTP_201_CREATED
            order_id = outcome.id
        else:
            body = BulkOrderResultOut.from_domain(outcome).model_dump(mode="json")
            status_code = (
                status.HTTP_201_CREATED if outcome.successful_orders else status.HTTP_422_UNPROCESSABLE_ENTITY
            )

        if rec:
            finalize(rec, status_code, body, order_id=order_id)
        return Response(body, status=status_code)


class RetrieveOrderView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def get(self, request, oid):
        order = OrderRepository().get(oid)
        if order is None:
            return Response(error_body("NOT_FOUND", f"Order not found: {oid}"), status=status.HTTP_404_NOT_FOUND)
        return Response(OrderOut.from_domain(order).model_dump(mode="json"), status=status.HTTP_200_OK)


class ProductPriceView(APIView):
    """VAT-inclusive price of one unit of a product in its own region.

    The quote is cached in the ``product_price`` region and dropped with
    every stock, order or catalog change.
    """

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "product_price"

    def get(self, request, product_id: int):
        service = get_price_quote_service()
        try:
            quote = get_cache_coordinator().read_through(
                CacheRegion.PRODUCT_PRICE, f"price:{product_id}", lambda: service.quote(product_id)
            )
        except OrderError as exc:
            return _error_response(exc)
        return Response(PriceQuoteOut.from_domain(quote).model_dump(mode="json"), status=status.HTTP_200_OK)
