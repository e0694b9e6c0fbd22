"""
Order and reservation lifecycle.

Both entities share one status graph:

    pending   -> confirmed | cancelled
    confirmed -> completed | cancelled

completed and cancelled are terminal.
"""

from enum import Enum
from typing import Iterable, Union

from tablekeeper.core.errors import InvalidStateTransition, ValidationError
from tablekeeper.schemas import OrderItem

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"confirmed", "cancelled"}),
    "confirmed": frozenset({"completed", "cancelled"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
}

TERMINAL_STATES = frozenset({"completed", "cancelled"})


def _value(status: Union[str, Enum]) -> str:
    return status.value if isinstance(status, Enum) else str(status)


def parse_status(enum_cls: type[Enum], raw: Union[str, Enum]) -> Enum:
    try:
        return enum_cls(_value(raw))
    except ValueError:
        raise ValidationError(f"Unknown status '{_value(raw)}'", status=_value(raw)) from None


def can_transition(current: Union[str, Enum], target: Union[str, Enum]) -> bool:
    return _value(target) in ALLOWED_TRANSITIONS.get(_value(current), frozenset())


def check_transition(current: Union[str, Enum], target: Union[str, Enum]) -> None:
    """Raise InvalidStateTransition unless current -> target is an allowed edge."""
    if not can_transition(current, target):
        raise InvalidStateTransition(_value(current), _value(target))


def is_terminal(status: Union[str, Enum]) -> bool:
    return _value(status) in TERMINAL_STATES


def compute_total(items: Iterable[OrderItem], discount: float = 0.0) -> float:
    """Sum of price x quantity minus discount, floored at zero, in cents."""
    subtotal = sum(item.price * item.quantity for item in items)
    return round(max(0.0, subtotal - (discount or 0.0)), 2)
