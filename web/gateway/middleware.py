"""Gateway middleware: request correlation and API body size limits.

``RequestIdMiddleware`` gives every request an identifier, read from the
incoming ``X-Request-Id`` header or generated as a UUIDv4. The id is stored
on the request and in a ContextVar so log filters and the catalog HTTP
client can pick it up without passing it around, and it is echoed back in
the ``X-Request-ID`` response header.

``ApiSizeLimitMiddleware`` rejects ``/api/`` requests whose declared body
exceeds ``API_MAX_BYTES`` with HTTP 413 before any view parses them.
"""

import contextvars
import os
import uuid

from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")
MAX_API_BYTES = int(os.getenv("API_MAX_BYTES", str(1 * 1024 * 1024)))


class RequestIdMiddleware(MiddlewareMixin):
    """Set and return a per-request identifier.

    Attributes:
        HEADER (str): Incoming header in ``request.META`` casing.
        RESPONSE_HEADER (str): Header added to outgoing responses.
    """

    HEADER = "HTTP_X_REQUEST_ID"
    RESPONSE_HEADER = "X-Request-ID"

    def process_request(self, request):
        rid = request.META.get(self.HEADER) or str(uuid.uuid4())
        request.request_id = rid
        REQUEST_ID_CTX.set(rid)

    def process_response(self, request, response):
        """Attach the id to the response, falling back to the ContextVar."""
        response[self.RESPONSE_HEADER] = getattr(request, "request_id", REQUEST_ID_CTX.get())
        return response


class ApiSizeLimitMiddleware(MiddlewareMixin):
    def process_request(self, request):
        if request.path.startswith("/api/"):
            clen = request.META.get("CONTENT_LENGTH")
            if clen and clen.isdigit() and int(clen) > MAX_API_BYTES:
                return JsonResponse({"detail": "PAYLOAD_TOO_LARGE"}, status=413)
