"""HTTP views for the orders app.

This module contains DRF API views used by the orders service. Views are
kept intentionally small: they read the caller identity forwarded by the
gateway, validate requests (via Pydantic), delegate to the transition
engine, and map the result or the error to an HTTP response.

Identity: authentication happens upstream. The gateway forwards the
buyer id in ``X-User-Id`` and, for producer accounts, the producer id in
``X-Producer-Id``. A request missing the header its action needs gets 401.

Concurrency: every state-changing request carries the ``row_version`` the
client last read; responses return the new one. A stale version gets 409
with ``STALE_ORDER`` and the client must re-read before retrying.

Error mapping (``{"detail": <code>, "message": <text>}``):
- 400 ValidationError (and DTO validation errors)
- 403 NotAuthorizedError
- 404 OrderNotFoundError
- 409 ConcurrencyConflictError, StockUnavailableError
- 422 any other BusinessRuleError
"""

import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from . import providers
from .domain import PaymentImage
from .errors import (
    BusinessRuleError,
    ConcurrencyConflictError,
    NotAuthorizedError,
    OrderError,
    OrderNotFoundError,
    StockUnavailableError,
    ValidationError,
)
from .schemas import AcceptOrderDTO, ConfirmOrderDTO, CreateOrderDTO, OrderReadDTO, RejectOrderDTO, RowVersionDTO

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"
PRODUCER_HEADER = "X-Producer-Id"


def _caller_id(request, header: str):
    raw = request.headers.get(header)
    if raw is None or not raw.strip().isdigit():
        return None
    return int(raw.strip())


def _unauthenticated(header: str) -> Response:
    return Response(
        {"detail": "UNAUTHENTICATED", "message": f"Missing or invalid {header} header."},
        status=status.HTTP_401_UNAUTHORIZED,
    )


def _error_response(exc: OrderError) -> Response:
    if isinstance(exc, ValidationError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, NotAuthorizedError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, OrderNotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, (ConcurrencyConflictError, StockUnavailableError)):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, BusinessRuleError):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    else:
        code = status.HTTP_400_BAD_REQUEST
    return Response({"detail": exc.code, "message": exc.message}, status=code)


def _order_body(order) -> dict:
    return OrderReadDTO.from_order(order).model_dump(mode="json", exclude_none=True)


def _page_params(request) -> tuple[int, int]:
    try:
        page = int(request.GET.get("page", 1))
        page_size = int(request.GET.get("page_size", 20))
    except ValueError:
        page, page_size = 1, 20
    return page, page_size


def _page_body(total: int, page: int, page_size: int, orders) -> dict:
    return {
        "count": total,
        "page": max(1, page),
        "page_size": max(1, min(100, page_size)),
        "results": [_order_body(o) for o in orders],
    }


class OrdersPingView(APIView):
    """Simple health-check endpoint for the orders module."""

    def get(self, request):
        return Response({"ok": True})


class OrdersCollectionView(APIView):
    """List the caller's orders (GET) or place a new one (POST).

    POST validates the payload with ``CreateOrderDTO`` and returns 201 with
    the created order, including its ``code`` and initial ``row_version``.
    """

    throttle_classes = [ScopedRateThrottle]

    def get_throttles(self):
        # DRF evaluates throttles in initial(), before get/post
        self.throttle_scope = "orders_list" if self.request.method == "GET" else "orders_create"
        return [throttle() for throttle in self.throttle_classes]

    def get(self, request):
        user_id = _caller_id(request, USER_HEADER)
        if user_id is None:
            return _unauthenticated(USER_HEADER)
        page, page_size = _page_params(request)
        total, orders = providers.get_order_engine().list_for_buyer(user_id, page, page_size)
        return Response(_page_body(total, page, page_size, orders), status=200)

    def post(self, request):
        user_id = _caller_id(request, USER_HEADER)
        if user_id is None:
            return _unauthenticated(USER_HEADER)

        try:
            dto = CreateOrderDTO.model_validate(request.data)
        except Exception as e:
            return Response({"detail": "INVALID_PAYLOAD", "message": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        try:
            order = providers.get_order_engine().create(
                user_id, dto.product_id, dto.quantity_requested, producer_id=_caller_id(request, PRODUCER_HEADER)
            )
        except OrderError as e:
            return _error_response(e)
        return Response(_order_body(order), status=status.HTTP_201_CREATED)


class ProducerOrdersView(APIView):
    """Orders placed on the calling producer's products."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_list"

    def get(self, request):
        producer_id = _caller_id(request, PRODUCER_HEADER)
        if producer_id is None:
            return _unauthenticated(PRODUCER_HEADER)
        page, page_size = _page_params(request)
        total, orders = providers.get_order_engine().list_for_producer(producer_id, page, page_size)
        return Response(_page_body(total, page, page_size, orders), status=200)


class RetrieveOrderView(APIView):
    """Order detail for its buyer (``X-User-Id``) or its producer (``X-Producer-Id``)."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def get(self, request, code: str):
        engine = providers.get_order_engine()
        producer_id = _caller_id(request, PRODUCER_HEADER)
        user_id = _caller_id(request, USER_HEADER)
        try:
            if producer_id is not None:
                order = engine.get_for_producer(producer_id, code)
            elif user_id is not None:
                order = engine.get_for_buyer(user_id, code)
            else:
                return _unauthenticated(USER_HEADER)
        except OrderError as e:
            return _error_response(e)
        return Response(_order_body(order), status=200)


class OrderTransitionView(APIView):
    """Base view for one lifecycle action on ``/api/orders/<code>/<action>/``.

    Subclasses name the identity header they need, the DTO their body must
    satisfy, and how to call the engine.
    """

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_transition"
    actor_header = PRODUCER_HEADER
    dto_class = RowVersionDTO

    def perform(self, engine, actor_id: int, code: str, dto, request):
        raise NotImplementedError()

    def payload(self, request) -> dict:
        return request.data

    def post(self, request, code: str):
        actor_id = _caller_id(request, self.actor_header)
        if actor_id is None:
            return _unauthenticated(self.actor_header)

        try:
            dto = self.dto_class.model_validate(self.payload(request))
        except Exception as e:
            return Response({"detail": "INVALID_PAYLOAD", "message": str(e)}, status=status.HTTP_400_BAD_REQUEST)

        try:
            order = self.perform(providers.get_order_engine(), actor_id, code, dto, request)
        except OrderError as e:
            logger.info(
                "order action refused",
                extra={"action": type(self).__name__, "order_code": code, "code": e.code},
            )
            return _error_response(e)
        return Response(_order_body(order), status=200)


class AcceptOrderView(OrderTransitionView):
    dto_class = AcceptOrderDTO

    def perform(self, engine, actor_id, code, dto, request):
        return engine.accept(actor_id, code, dto.row_version, notes=dto.notes)


class RejectOrderView(OrderTransitionView):
    dto_class = RejectOrderDTO

    def perform(self, engine, actor_id, code, dto, request):
        return engine.reject(actor_id, code, dto.row_version, dto.reason)


class MarkPreparingView(OrderTransitionView):
    def perform(self, engine, actor_id, code, dto, request):
        return engine.mark_preparing(actor_id, code, dto.row_version)


class MarkDispatchedView(OrderTransitionView):
    def perform(self, engine, actor_id, code, dto, request):
        return engine.mark_dispatched(actor_id, code, dto.row_version)


class MarkDeliveredView(OrderTransitionView):
    def perform(self, engine, actor_id, code, dto, request):
        return engine.mark_delivered(actor_id, code, dto.row_version)


class UploadPaymentView(OrderTransitionView):
    """Multipart upload: ``payment_image`` file plus ``row_version`` field."""

    actor_header = USER_HEADER

    def payload(self, request) -> dict:
        return {"row_version": request.data.get("row_version")}

    def perform(self, engine, actor_id, code, dto, request):
        upload = request.FILES.get("payment_image")
        image = None
        if upload is not None:
            image = PaymentImage(
                content=upload.read(),
                filename=upload.name or "payment",
                content_type=getattr(upload, "content_type", None) or "application/octet-stream",
            )
        return engine.upload_payment(actor_id, code, dto.row_version, image)


class ConfirmOrderView(OrderTransitionView):
    actor_header = USER_HEADER
    dto_class = ConfirmOrderDTO

    def perform(self, engine, actor_id, code, dto, request):
        return engine.confirm(actor_id, code, dto.row_version, dto.answer)


class CancelOrderView(OrderTransitionView):
    actor_header = USER_HEADER

    def perform(self, engine, actor_id, code, dto, request):
        return engine.cancel_by_user(actor_id, code, dto.row_version)
