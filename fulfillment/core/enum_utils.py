"""
Enum Utilities for VARCHAR-based Status Fields

CONVENTION:
━━━━━━━━━━━
• Database: VARCHAR(20) - NOT a native ENUM type
• SQLAlchemy: String(20) with Mapped[str]
• Python: str Enum classes document the allowed values
• Case: All enum values stored in UPPERCASE

DATA FLOW:
━━━━━━━━━━
    OrderStatus.PENDING → get_enum_value() → "PENDING" → VARCHAR
    VARCHAR "PENDING" == OrderStatus.PENDING.value
"""

from enum import Enum
from typing import Any, Optional, Type


def get_enum_value(value: Any) -> Optional[str]:
    """
    Safely get string value from an enum or string.

    Examples:
        >>> get_enum_value(OrderStatus.PENDING)
        'PENDING'
        >>> get_enum_value("PENDING")
        'PENDING'
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    return str(value)


def enum_values(enum_class: Type[Enum]) -> list:
    """All values of an enum class, in declaration order."""
    return [e.value for e in enum_class]


def enum_comment(enum_class: Type[Enum]) -> str:
    """
    Comment string for a VARCHAR status column.

    Examples:
        >>> enum_comment(MovementType)
        'IN, OUT, RESERVED, UNRESERVED, ADJUSTMENT'
    """
    return ", ".join(enum_values(enum_class))


def enum_check(column: str, enum_class: Type[Enum]) -> str:
    """
    SQL CHECK expression restricting a VARCHAR column to the enum's values.

    Examples:
        >>> enum_check("status", PaymentStatus)
        "status IN ('PENDING', 'COMPLETED', 'FAILED', 'REFUNDED')"
    """
    allowed = ", ".join(f"'{v}'" for v in enum_values(enum_class))
    return f"{column} IN ({allowed})"
