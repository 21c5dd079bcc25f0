"""
Cart events and the pure reducer.

    cart = reduce(cart, AddLine(line))
    cart = reduce(cart, UpdateQuantity(line.key, 3))

reduce() never mutates its input and never performs I/O.
"""

from __future__ import annotations

from dataclasses import dataclass

from cartflow.cart._types import Cart, CartLine, LineKey, ServerLineKey

# ═══════════════════════════════════════════════════════════════════════════════
# Events
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class AddLine:
    """Merge into the line with the same identity, or append."""

    line: CartLine


@dataclass(frozen=True, slots=True)
class UpdateQuantity:
    """Set quantity; zero removes the line."""

    key: LineKey
    quantity: int

    def __post_init__(self) -> None:
        if self.quantity < 0:
            raise ValueError(f"quantity must be >= 0, got {self.quantity}")


@dataclass(frozen=True, slots=True)
class RemoveLine:
    key: LineKey


@dataclass(frozen=True, slots=True)
class ReplaceCart:
    """Wholesale replacement with server truth."""

    lines: tuple[CartLine, ...]


@dataclass(frozen=True, slots=True)
class Rollback:
    """Restore a snapshot taken before an optimistic mutation."""

    snapshot: Cart


@dataclass(frozen=True, slots=True)
class RestoreLine:
    """
    Put one line back as a snapshot had it, leaving every other line alone.

    line is None when the snapshot had no such line.
    """

    key: LineKey
    line: CartLine | None
    position: int = 0


@dataclass(frozen=True, slots=True)
class ClearCart:
    pass


type CartEvent = AddLine | UpdateQuantity | RemoveLine | ReplaceCart | Rollback | RestoreLine | ClearCart


# ═══════════════════════════════════════════════════════════════════════════════
# Reducer
# ═══════════════════════════════════════════════════════════════════════════════


def _same_identity(existing: CartLine, incoming: CartLine) -> bool:
    if incoming.server_line_id is not None:
        return existing.server_line_id == incoming.server_line_id
    return existing.variant == incoming.variant


def _add(cart: Cart, line: CartLine) -> Cart:
    for i, existing in enumerate(cart.lines):
        if _same_identity(existing, line):
            merged = existing.with_quantity(existing.quantity + line.quantity)
            return Cart((*cart.lines[:i], merged, *cart.lines[i + 1 :]))
    return Cart((*cart.lines, line))


def _update(cart: Cart, key: LineKey, quantity: int) -> Cart:
    if quantity == 0:
        return _remove(cart, key)

    lines = list(cart.lines)
    for i, line in enumerate(lines):
        if line.matches(key):
            lines[i] = line.with_quantity(quantity)
            # One line per identity
            return Cart(tuple(lines))
    return cart


def _remove(cart: Cart, key: LineKey) -> Cart:
    match key:
        case ServerLineKey():
            kept = tuple(line for line in cart.lines if not line.matches(key))
        case _:
            # VariantKey removes the first matching line only
            kept_list = list(cart.lines)
            for i, line in enumerate(kept_list):
                if line.matches(key):
                    del kept_list[i]
                    break
            kept = tuple(kept_list)
    return cart if len(kept) == len(cart.lines) else Cart(kept)


def _restore_line(cart: Cart, key: LineKey, line: CartLine | None, position: int) -> Cart:
    kept = [existing for existing in cart.lines if not existing.matches(key)]
    if line is not None:
        kept.insert(min(position, len(kept)), line)
    return Cart(tuple(kept))


def normalize(lines: tuple[CartLine, ...]) -> Cart:
    """
    Build a cart that satisfies the identity invariant.

    Duplicate identities (a server merging two rows into the same
    variant) are folded into the first occurrence.
    """
    cart = Cart()
    for line in lines:
        cart = _add(cart, line)
    return cart


def reduce(cart: Cart, event: CartEvent) -> Cart:
    """Apply one event to a cart. Pure."""
    match event:
        case AddLine(line=line):
            return _add(cart, line)
        case UpdateQuantity(key=key, quantity=quantity):
            return _update(cart, key, quantity)
        case RemoveLine(key=key):
            return _remove(cart, key)
        case ReplaceCart(lines=lines):
            return normalize(lines)
        case Rollback(snapshot=snapshot):
            return snapshot
        case RestoreLine(key=restore_key, line=previous, position=position):
            return _restore_line(cart, restore_key, previous, position)
        case ClearCart():
            return Cart()


__all__ = (
    "AddLine",
    "UpdateQuantity",
    "RemoveLine",
    "ReplaceCart",
    "Rollback",
    "RestoreLine",
    "ClearCart",
    "CartEvent",
    "normalize",
    "reduce",
)
