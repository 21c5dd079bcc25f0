"""
Cart types: lines, identity keys and the immutable cart value.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field, replace

from cartflow._types import Money

# ═══════════════════════════════════════════════════════════════════════════════
# Identity Keys
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class VariantKey:
    """Identity of a line without a server-assigned id."""

    product_id: int
    color: str | None = None
    size: str | None = None


@dataclass(frozen=True, slots=True)
class ServerLineKey:
    """Identity of a line the backend has assigned an id to."""

    line_id: str | int


type LineKey = VariantKey | ServerLineKey


# ═══════════════════════════════════════════════════════════════════════════════
# CartLine
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class CartLine:
    """
    One line of the cart.

    Invariants:
        quantity >= 1 (zero means "remove", never stored)
        price >= 0
    """

    product_id: int
    name: str
    price: Money
    quantity: int = 1
    image: str = ""
    color: str | None = None
    size: str | None = None
    server_line_id: str | int | None = None

    def __post_init__(self) -> None:
        if self.quantity < 1:
            raise ValueError(f"quantity must be >= 1, got {self.quantity}")
        if self.price < 0:
            raise ValueError(f"price must be >= 0, got {self.price}")

    @property
    def variant(self) -> VariantKey:
        return VariantKey(self.product_id, self.color, self.size)

    @property
    def key(self) -> LineKey:
        if self.server_line_id is not None:
            return ServerLineKey(self.server_line_id)
        return self.variant

    @property
    def line_total(self) -> Money:
        return self.price * self.quantity

    def matches(self, key: LineKey) -> bool:
        """
        Check if key addresses this line.

        Note: A VariantKey also matches a line that already carries a
        server id. Screens often only know (product, color, size).
        """
        match key:
            case ServerLineKey(line_id=line_id):
                return self.server_line_id == line_id
            case VariantKey():
                return self.variant == key

    def with_quantity(self, quantity: int) -> CartLine:
        return replace(self, quantity=quantity)

    def as_payload(self) -> dict[str, object]:
        return {
            "productId": self.product_id,
            "quantity": self.quantity,
            "price": self.price,
        }


# ═══════════════════════════════════════════════════════════════════════════════
# Cart (immutable, doubles as rollback snapshot)
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Cart:
    """Ordered, immutable sequence of lines."""

    lines: tuple[CartLine, ...] = field(default_factory=tuple)

    @property
    def total(self) -> Money:
        return sum(line.line_total for line in self.lines)

    @property
    def is_empty(self) -> bool:
        return not self.lines

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    def find(self, key: LineKey) -> CartLine | None:
        for line in self.lines:
            if line.matches(key):
                return line
        return None

    def __len__(self) -> int:
        return len(self.lines)

    def __iter__(self) -> Iterator[CartLine]:
        return iter(self.lines)


type CartSnapshot = Cart


__all__ = (
    "VariantKey",
    "ServerLineKey",
    "LineKey",
    "CartLine",
    "Cart",
    "CartSnapshot",
)
