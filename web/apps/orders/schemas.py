"""Pydantic schemas for orders.

Request schemas only check types and the single/bulk envelope; business
rules (required fields, quantity >= 1, region, stock) are enforced by the
domain so every client sees the same error codes. Response schemas are
serialized with ``model_dump(mode="json")`` which renders money as
decimal strings.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .domain import (
    BulkOrderEntry,
    BulkOrderResult,
    ContactInfo,
    Order,
    OrderItem,
    OrderRequest,
    PriceQuote,
)


# ---- Requests ----
class OrderLineIn(BaseModel):
    """One requested line. Missing values are reported by the domain."""

    product_id: Optional[int] = None
    quantity: Optional[int] = None

    def to_domain(self) -> OrderItem:
        return OrderItem(product_id=self.product_id, quantity=self.quantity)


class SubOrderIn(BaseModel):
    items: list[OrderLineIn] = Field(default_factory=list)


class CreateOrderDTO(BaseModel):
    """Flexible create payload: ``items`` for one order, ``orders`` for bulk.

    Attributes:
        items: Lines of a single order.
        orders: Sub-orders of a bulk request; wins over ``items``.
        contact_name: Optional contact name.
        phone_number: Optional contact phone.
        delivery_address: Optional delivery address.
    """

    items: Optional[list[OrderLineIn]] = None
    orders: Optional[list[SubOrderIn]] = None
    contact_name: Optional[str] = Field(default=None, max_length=255)
    phone_number: Optional[str] = Field(default=None, max_length=50)
    delivery_address: Optional[str] = None

    @field_validator("contact_name", "phone_number", "delivery_address")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        """Strip contact fields and treat blank strings as absent."""
        if v is None:
            return None
        v = v.strip()
        return v or None

    def to_domain(self, customer_id: str, region: str) -> OrderRequest:
        contact = ContactInfo(
            contact_name=self.contact_name,
            phone_number=self.phone_number,
            delivery_address=self.delivery_address,
        )
        return OrderRequest(
            customer_id=customer_id,
            region=region,
            items=[i.to_domain() for i in self.items] if self.items is not None else None,
            orders=[[i.to_domain() for i in o.items] for o in self.orders] if self.orders else None,
            contact=contact,
        )


# ---- Responses ----
class OrderLineOut(BaseModel):
    product_id: int
    product_name: str
    quantity: int
    unit_price: Decimal
    region: str
    vat_percentage: Decimal
    vat_amount: Decimal
    final_price: Decimal


class OrderOut(BaseModel):
    """Order as returned by the create, list and detail endpoints."""

    id: UUID
    internal_id: Optional[int] = None
    customer_id: str
    region: str
    status: str
    total_price: Decimal
    confirmation_number: Optional[str] = None
    contact_name: Optional[str] = None
    phone_number: Optional[str] = None
    delivery_address: Optional[str] = None
    items: list[OrderLineOut]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, order: Order) -> "OrderOut":
        return cls(
            id=order.id,
            internal_id=order.internal_id,
            customer_id=order.customer_id,
            region=order.region,
            status=order.status.value,
            total_price=order.total_price,
            confirmation_number=order.confirmation_number,
            contact_name=order.contact.contact_name,
            phone_number=order.contact.phone_number,
            delivery_address=order.contact.delivery_address,
            items=[OrderLineOut.model_validate(line, from_attributes=True) for line in order.lines],
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


class BulkEntryOut(BaseModel):
    index: int
    success: bool
    message: str
    order_id: Optional[UUID] = None
    error: Optional[dict] = None

    @classmethod
    def from_domain(cls, entry: BulkOrderEntry) -> "BulkEntryOut":
        return cls(
            index=entry.index,
            success=entry.success,
            message=entry.message,
            order_id=entry.order.id if entry.order else None,
            error=entry.error.to_dict() if entry.error else None,
        )


class BulkOrderResultOut(BaseModel):
    total_orders: int
    successful_orders: int
    failed_orders: int
    orders: list[OrderOut]
    results: list[BulkEntryOut]

    @classmethod
    def from_domain(cls, result: BulkOrderResult) -> "BulkOrderResultOut":
        return cls(
            total_orders=result.total_orders,
            successful_orders=result.successful_orders,
            failed_orders=result.failed_orders,
            orders=[OrderOut.from_domain(o) for o in result.orders],
            results=[BulkEntryOut.from_domain(e) for e in result.results],
        )


class PriceQuoteOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    product_id: int
    product_name: str
    region: str
    currency: str
    base_price: Decimal
    vat_percentage: Decimal
    vat_amount: Decimal
    final_price: Decimal

    @classmethod
    def from_domain(cls, quote: PriceQuote) -> "PriceQuoteOut":
        return cls.model_validate(quote)
