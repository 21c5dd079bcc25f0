"""
Response schemas for the commerce backend.

The backend is inconsistent about field names (productId vs product.id,
total vs totalPrice, items vs orderItems). Every alternative spelling is
accepted here, so the rest of cartflow only ever sees domain types.
"""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, AliasPath, BaseModel, ConfigDict, Field

from cartflow._types import Address, Money, Totals, to_money
from cartflow.cart import CartLine
from cartflow.finalize._types import Order, OrderStatus, PaymentStatus


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True, coerce_numbers_to_str=True)


def _money(value: object) -> Money:
    try:
        return max(0, to_money(value))
    except ValueError:
        return 0


# ═══════════════════════════════════════════════════════════════════════════════
# Cart
# ═══════════════════════════════════════════════════════════════════════════════


class CartItemBody(_Lenient):
    product_id: int = Field(
        validation_alias=AliasChoices("productId", AliasPath("product", "id"), "id"),
    )
    name: str = Field(
        default="",
        validation_alias=AliasChoices("productName", AliasPath("product", "name"), "name"),
    )
    price: Any = Field(
        default=0,
        validation_alias=AliasChoices(
            "price", "unitPrice", "specialPrice", AliasPath("product", "price")
        ),
    )
    image: str = Field(
        default="",
        validation_alias=AliasChoices(
            "imageUrl", "image", AliasPath("product", "imageUrl"), AliasPath("product", "image")
        ),
    )
    color: str | None = Field(default=None, validation_alias=AliasChoices("color", "variantColor"))
    size: str | None = Field(default=None, validation_alias=AliasChoices("size", "variantSize"))
    quantity: int = Field(default=1, validation_alias=AliasChoices("quantity", "qty"))
    line_id: str | None = Field(default=None, validation_alias=AliasChoices("id", "cartItemId"))

    def to_line(self) -> CartLine | None:
        """Domain line, or None for a non-positive quantity."""
        if self.quantity < 1:
            return None
        return CartLine(
            product_id=self.product_id,
            name=self.name,
            price=_money(self.price),
            quantity=self.quantity,
            image=self.image,
            color=self.color,
            size=self.size,
            server_line_id=self.line_id,
        )


class CartBody(_Lenient):
    cart_id: str | None = Field(default=None, validation_alias=AliasChoices("cartId", "id"))
    items: list[CartItemBody] = Field(
        default_factory=list,
        validation_alias=AliasChoices("items", "products", "cartItems"),
    )

    def to_lines(self) -> tuple[CartLine, ...]:
        lines = (item.to_line() for item in self.items)
        return tuple(line for line in lines if line is not None)


# ═══════════════════════════════════════════════════════════════════════════════
# Orders
# ═══════════════════════════════════════════════════════════════════════════════


class OrderItemBody(_Lenient):
    product_id: int = Field(
        validation_alias=AliasChoices(
            AliasPath("product", "id"), AliasPath("product", "productId"), "productId", "id"
        ),
    )
    name: str = Field(
        default="",
        validation_alias=AliasChoices(AliasPath("product", "name"), "productName", "name"),
    )
    price: Any = Field(
        default=0,
        validation_alias=AliasChoices("price", "unitPrice", AliasPath("product", "price")),
    )
    image: str = Field(
        default="",
        validation_alias=AliasChoices(
            AliasPath("product", "image"), AliasPath("product", "imageUrl"), "image", "thumbnail"
        ),
    )
    quantity: int = Field(default=1, validation_alias=AliasChoices("quantity", "qty"))

    def to_line(self) -> CartLine | None:
        if self.quantity < 1:
            return None
        return CartLine(
            product_id=self.product_id,
            name=self.name,
            price=_money(self.price),
            quantity=self.quantity,
            image=self.image,
        )


class AddressBody(_Lenient):
    line1: str = Field(default="", validation_alias=AliasChoices("line1", "addressLine", "street"))
    city: str = ""
    state: str = Field(default="", validation_alias=AliasChoices("state", "district"))
    country: str = "VN"
    postal_code: str = Field(default="", validation_alias=AliasChoices("postalCode", "pincode"))
    phone: str = Field(default="", validation_alias=AliasChoices("phone", "receiverPhone"))
    full_name: str = Field(default="", validation_alias=AliasChoices("fullName", "receiverName"))

    def to_address(self) -> Address:
        return Address(
            line1=self.line1,
            city=self.city,
            state=self.state,
            country=self.country,
            postal_code=self.postal_code,
            phone=self.phone,
            full_name=self.full_name,
        )


class OrderBody(_Lenient):
    order_id: str = Field(validation_alias=AliasChoices("orderId", "id"))
    status: str | None = Field(default=None, validation_alias=AliasChoices("status", "orderStatus"))
    items: list[OrderItemBody] = Field(
        default_factory=list,
        validation_alias=AliasChoices("items", "orderItems"),
    )
    address: AddressBody | None = Field(
        default=None,
        validation_alias=AliasChoices("shippingAddress", "address"),
    )
    total: Any = Field(
        default=None,
        validation_alias=AliasChoices("total", "totalPrice", "totalAmount", "amount"),
    )
    shipping_fee: Any = Field(default=0, validation_alias=AliasChoices("shippingFee", "shipFee"))
    payment_status: str | None = Field(default=None, validation_alias="paymentStatus")
    intent_id: str | None = Field(default=None, validation_alias=AliasChoices("intentId", "paymentIntentId"))
    created_at: str | None = Field(
        default=None,
        validation_alias=AliasChoices("createdAt", "createdDate", "created_date"),
    )

    def to_order(self) -> Order:
        lines = tuple(line for line in (i.to_line() for i in self.items) if line is not None)
        subtotal = sum(line.line_total for line in lines)
        fee = _money(self.shipping_fee)
        total = subtotal + fee if self.total is None else _money(self.total)
        return Order(
            order_id=self.order_id,
            status=OrderStatus.parse(self.status),
            items=lines,
            address=self.address.to_address() if self.address else None,
            totals=Totals(
                subtotal=subtotal,
                shipping_fee=fee,
                discount=max(0, subtotal + fee - total),
            ),
            payment_status=PaymentStatus.parse(self.payment_status),
            intent_id=self.intent_id,
        )


class FinalizeAck(_Lenient):
    """Order endpoint response. The id is optional on some backends."""

    order_id: str | None = Field(default=None, validation_alias=AliasChoices("orderId", "id"))


__all__ = (
    "CartItemBody",
    "CartBody",
    "OrderItemBody",
    "AddressBody",
    "OrderBody",
    "FinalizeAck",
)
