"""Gateway middleware: request correlation, caller context and size limits.

``RequestIdMiddleware`` makes sure every incoming HTTP request has a
request identifier. The identifier is read from the incoming
``X-Request-Id`` header when provided by the client, or generated
server-side otherwise, and echoed back in the ``X-Request-ID`` response
header.

``CallerContextMiddleware`` picks up the caller identity forwarded by the
authentication layer in front of this service (``X-Customer-Id`` and
``X-Region``). Token validation happens upstream; this service only reads
the result.

Both store their values on the ``request`` object and in context variables
so code running downstream (log filters, HTTP clients) can access them
without passing the values explicitly.
"""

import contextvars
import os
import uuid
from dataclasses import dataclass
from typing import Optional

from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")
CUSTOMER_ID_CTX = contextvars.ContextVar("customer_id", default="-")
REGION_CTX = contextvars.ContextVar("region", default="-")
MAX_API_BYTES = int(os.getenv("API_MAX_BYTES", str(1 * 1024 * 1024)))


class RequestIdMiddleware(MiddlewareMixin):
    """Django middleware that sets and returns a per-request identifier.

    Attributes:
        HEADER (str): The incoming header in ``request.META`` casing.
        RESPONSE_HEADER (str): The name of the header returned on responses.
    """

    HEADER = "HTTP_X_REQUEST_ID"
    RESPONSE_HEADER = "X-Request-ID"

    def process_request(self, request):
        """Reuse the client's request id or generate a UUIDv4.

        Args:
            request: Django HttpRequest instance.
        """
        rid = request.META.get(self.HEADER)
        if not rid:
            rid = str(uuid.uuid4())
        request.request_id = rid
        REQUEST_ID_CTX.set(rid)

    def process_response(self, request, response):
        rid = getattr(request, "request_id", REQUEST_ID_CTX.get())
        response[self.RESPONSE_HEADER] = rid
        return response


@dataclass(frozen=True)
class Caller:
    customer_id: str
    region: str


class CallerContextMiddleware(MiddlewareMixin):
    """Expose the forwarded caller identity as ``request.caller``.

    ``request.caller`` is None when either header is missing; views that
    require a caller answer 401 in that case.
    """

    CUSTOMER_HEADER = "HTTP_X_CUSTOMER_ID"
    REGION_HEADER = "HTTP_X_REGION"

    def process_request(self, request):
        customer_id = (request.META.get(self.CUSTOMER_HEADER) or "").strip()
        region = (request.META.get(self.REGION_HEADER) or "").strip()
        caller: Optional[Caller] = None
        if customer_id and region:
            caller = Caller(customer_id=customer_id, region=region)
        request.caller = caller
        CUSTOMER_ID_CTX.set(customer_id or "-")
        REGION_CTX.set(region or "-")


class ApiSizeLimitMiddleware(MiddlewareMixin):
    def process_request(self, request):
        if request.path.startswith("/api/"):
            clen = request.META.get("CONTENT_LENGTH")
            if clen and clen.isdigit() and int(clen) > MAX_API_BYTES:
                return JsonResponse({"detail": "PAYLOAD_TOO_LARGE"}, status=413)
