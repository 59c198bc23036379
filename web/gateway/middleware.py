"""Middleware that assigns and propagates a request identifier.

This module provides small Django middlewares:

- ``RequestIdMiddleware`` ensures every incoming HTTP request receives a
  request identifier (UUID). The identifier is read from the incoming
  ``X-Request-Id`` header when provided by the client, or generated
  server-side otherwise. It is stored on the ``request`` object and in the
  ``REQUEST_ID_CTX`` context variable so code running downstream (the
  HTTP adapters, the log filter) can read it without passing it around.
  Scanner threads set the same variable to a per-cycle id.
- ``ApiSizeLimitMiddleware`` refuses ``/api/`` requests whose declared
  body exceeds ``API_MAX_BYTES`` (payment proofs included).
"""

import contextvars
import os
import uuid

from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")
MAX_API_BYTES = int(os.getenv("API_MAX_BYTES", str(5 * 1024 * 1024)))


class RequestIdMiddleware(MiddlewareMixin):
    """Django middleware that sets and returns a per-request identifier.

    Attributes:
        HEADER (str): The incoming header in Django's ``request.META`` casing.
        RESPONSE_HEADER (str): The header returned on responses.
    """

    HEADER = "HTTP_X_REQUEST_ID"
    RESPONSE_HEADER = "X-Request-ID"

    def process_request(self, request):
        rid = request.META.get(self.HEADER)
        if not rid:
            rid = str(uuid.uuid4())
        request.request_id = rid
        request._request_id_token = REQUEST_ID_CTX.set(rid)

    def process_response(self, request, response):
        """Set the ``X-Request-ID`` response header and clear the context var.

        Prefers the id attached to the request object, falling back to the
        ContextVar value (for example in some error handlers).
        """
        rid = getattr(request, "request_id", REQUEST_ID_CTX.get())
        response[self.RESPONSE_HEADER] = rid
        token = getattr(request, "_request_id_token", None)
        if token is not None:
            REQUEST_ID_CTX.reset(token)
            request._request_id_token = None
        return response


class ApiSizeLimitMiddleware(MiddlewareMixin):
    def process_request(self, request):
        if request.path.startswith("/api/"):
            clen = request.META.get("CONTENT_LENGTH")
            if clen and clen.isdigit() and int(clen) > MAX_API_BYTES:
                return JsonResponse({"detail": "PAYLOAD_TOO_LARGE"}, status=413)
