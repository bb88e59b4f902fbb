"""
Enum Utilities for VARCHAR-based Status Fields

STORAGE STANDARD:
━━━━━━━━━━━━━━━━━
• Database: VARCHAR(50) - NOT native ENUM types
• SQLAlchemy: String(50) with Mapped[str]
• Pydantic: Python Enum for API validation
• API Response: Use string directly (NO .value needed)

DATA FLOW:
━━━━━━━━━━
INPUT (API Request):
    Pydantic Enum → .value → String → Database
    Example: WorkstationStatus.FUNCTIONAL → "Functional" → VARCHAR

OUTPUT (API Response):
    Database → String → Return directly
"""

from enum import Enum
from typing import Any, Optional, Type


def get_enum_value(value: Any) -> Optional[str]:
    """
    Safely get string value from an enum or string.

    Examples:
        >>> get_enum_value(WorkstationStatus.FUNCTIONAL)  # Pydantic input
        'Functional'
        >>> get_enum_value("Functional")  # Database value
        'Functional'
        >>> get_enum_value(None)
        None
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    return str(value)


def match_enum_value(value: Any, enum_class: Type[Enum]) -> Any:
    """
    Case-insensitive match of ``value`` against the enum's values.

    Use in Pydantic ``mode='before'`` validators; returns the canonical value
    when matched and the original input otherwise (for Pydantic to reject).

    Examples:
        >>> match_enum_value('needs repair', WorkstationStatus)
        'Needs Repair'
    """
    if not isinstance(value, str):
        return value
    wanted = value.strip().lower()
    for member in enum_class:
        if str(member.value).lower() == wanted:
            return member.value
    return value
