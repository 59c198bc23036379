"""Pydantic schemas for orders.

This module exposes lightweight request/validation schemas used by the
orders API, plus the read schema the views serialize orders with. Only
the shape of the payload is checked here; lifecycle rules (for example
the accepted ``yes``/``no`` answers) are enforced by the state machine.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .domain import Order

MAX_QUANTITY = 10_000


class CreateOrderDTO(BaseModel):
    """Schema for creating an order.

    Attributes:
        product_id: Identifier of the product to order.
        quantity_requested: Units requested, 1 to ``MAX_QUANTITY``.
    """

    product_id: int = Field(gt=0)
    quantity_requested: int = Field(gt=0, le=MAX_QUANTITY)


class RowVersionDTO(BaseModel):
    """Body of every state-changing request: the concurrency token last read."""

    row_version: int = Field(ge=1)


class AcceptOrderDTO(RowVersionDTO):
    notes: Optional[str] = Field(default=None, max_length=500)


class RejectOrderDTO(RowVersionDTO):
    """Schema for rejecting an order.

    Attributes:
        reason: Why the producer declines; trimmed, must not be blank.
    """

    reason: str = Field(min_length=1, max_length=500)

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: str) -> str:
        """Trim the reason and refuse whitespace-only values.

        Raises:
            ValueError: When nothing is left after trimming.
        """
        v2 = v.strip()
        if not v2:
            raise ValueError("Reason must not be blank")
        return v2


class ConfirmOrderDTO(RowVersionDTO):
    answer: str = Field(max_length=10)


class OrderReadDTO(BaseModel):
    """Schema used to render an order in API responses."""

    code: str
    status: str
    product_id: int
    product_name: str
    unit_price_cents: int
    quantity_requested: int
    subtotal_cents: int
    total_cents: int
    created_at: datetime
    accepted_at: Optional[datetime] = None
    producer_decision_at: Optional[datetime] = None
    producer_decision_reason: Optional[str] = None
    producer_notes: Optional[str] = None
    payment_image_url: Optional[str] = None
    payment_submitted_at: Optional[datetime] = None
    user_confirm_enabled_at: Optional[datetime] = None
    user_received_answer: Optional[str] = None
    user_received_at: Optional[datetime] = None
    auto_close_at: Optional[datetime] = None
    row_version: int

    @classmethod
    def from_order(cls, order: Order) -> "OrderReadDTO":
        return cls(
            code=order.code,
            status=order.status.value,
            product_id=order.product_id,
            product_name=order.product_name_snapshot,
            unit_price_cents=order.unit_price_cents_snapshot,
            quantity_requested=order.quantity_requested,
            subtotal_cents=order.subtotal_cents,
            total_cents=order.total_cents,
            created_at=order.created_at,
            accepted_at=order.accepted_at,
            producer_decision_at=order.producer_decision_at,
            producer_decision_reason=order.producer_decision_reason,
            producer_notes=order.producer_notes,
            payment_image_url=order.payment_image_url,
            payment_submitted_at=order.payment_submitted_at,
            user_confirm_enabled_at=order.user_confirm_enabled_at,
            user_received_answer=(order.user_received_answer.value if order.user_received_answer else None),
            user_received_at=order.user_received_at,
            auto_close_at=order.auto_close_at,
            row_version=order.row_version,
        )
