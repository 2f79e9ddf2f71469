"""Gateway middleware: request correlation and payload size guard.

``RequestIdMiddleware`` gives every request an identifier, taken from the
incoming ``X-Request-ID`` header when the caller supplies a sane one and
generated otherwise. The id is stored on ``request.request_id`` and in
``REQUEST_ID_CTX`` so log records and outgoing notification calls can
carry it without passing it around, and is echoed on the response.

``ApiSizeLimitMiddleware`` rejects oversized bodies on ``/api/`` before they
are parsed.
"""

import contextvars
import os
import re
import uuid

from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")
MAX_API_BYTES = int(os.getenv("API_MAX_BYTES", str(256 * 1024)))

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


class RequestIdMiddleware(MiddlewareMixin):
    HEADER = "HTTP_X_REQUEST_ID"       # incoming header as found in request.META
    RESPONSE_HEADER = "X-Request-ID"

    def process_request(self, request):
        rid = request.META.get(self.HEADER, "")
        if not _REQUEST_ID_RE.match(rid):
            rid = str(uuid.uuid4())
        request.request_id = rid
        request._request_id_token = REQUEST_ID_CTX.set(rid)

    def process_response(self, request, response):
        rid = getattr(request, "request_id", REQUEST_ID_CTX.get())
        response[self.RESPONSE_HEADER] = rid
        token = getattr(request, "_request_id_token", None)
        if token is not None:
            # Worker threads are reused; do not leak the id into the next request
            REQUEST_ID_CTX.reset(token)
            request._request_id_token = None
        return response


class ApiSizeLimitMiddleware(MiddlewareMixin):
    def process_request(self, request):
        if request.path.startswith("/api/"):
            clen = request.META.get("CONTENT_LENGTH")
            if clen and clen.isdigit() and int(clen) > MAX_API_BYTES:
                return JsonResponse(
                    {"detail": "PAYLOAD_TOO_LARGE", "message": f"Request body exceeds {MAX_API_BYTES} bytes."},
                    status=413,
                )
