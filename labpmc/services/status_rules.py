"""
Workstation and asset status rules.

This module is the single source of truth for how a service event moves a
workstation between states and which reference status an asset ends up in.
Everything here is a pure function of its inputs so it can be checked
without a database.
"""

from datetime import date
from enum import Enum
from typing import Iterable, Mapping, Optional, Sequence, TypeVar


T = TypeVar("T")


# =============================================================================
# STATUS DEFINITIONS
# =============================================================================

class WorkstationStatus(str, Enum):
    """Condition of a workstation as recorded on its maintenance report."""
    NOT_PREVIOUSLY_SERVICED = "Not Previously Serviced"
    FUNCTIONAL = "Functional"
    NEEDS_REPAIR = "Needs Repair"
    FOR_REPAIR = "For Repair"
    FOR_UPGRADE = "For Upgrade"
    FOR_REPLACEMENT = "For Replacement"
    UPGRADED = "Upgraded"
    NOT_FUNCTIONAL = "Not Functional"

    @classmethod
    def submittable(cls) -> list:
        """Statuses a technician may report; the first-service marker is system-only."""
        return [s for s in cls if s is not cls.NOT_PREVIOUSLY_SERVICED]


class AssetActionKind(str, Enum):
    """What was done to a single asset during a service event."""
    CHECKED = "CHECKED"
    REPAIRED = "REPAIRED"
    UPGRADED = "UPGRADED"
    REPLACED = "REPLACED"

    @classmethod
    def parse(cls, value) -> "AssetActionKind":
        """
        Case-insensitive lookup. Unrecognized kinds are treated as CHECKED,
        i.e. recorded without touching the inventory.
        """
        if isinstance(value, cls):
            return value
        normalized = str(value or "").strip().upper()
        try:
            return cls(normalized)
        except ValueError:
            return cls.CHECKED

    @classmethod
    def is_known(cls, value) -> bool:
        return str(value or "").strip().upper() in {k.value for k in cls}


class ServiceType(str, Enum):
    """Kind of service event written to the log."""
    ROUTINE = "ROUTINE"
    REPAIR = "REPAIR"
    REPLACEMENT = "REPLACEMENT"
    UPGRADE = "UPGRADE"


# =============================================================================
# TRANSITION RULES
# =============================================================================

def derive_status_after(action_kinds: Iterable) -> WorkstationStatus:
    """
    Workstation status after a repair event.

    REPLACED outranks REPAIRED: any replacement makes the workstation
    "Upgraded"; otherwise it is "Functional" (including events that only
    checked equipment or carried no actions at all).
    """
    kinds = {AssetActionKind.parse(kind) for kind in action_kinds}
    if AssetActionKind.REPLACED in kinds:
        return WorkstationStatus.UPGRADED
    return WorkstationStatus.FUNCTIONAL


def resolve_preferred_status(
    candidates: Sequence[str],
    available: Mapping[str, T],
) -> Optional[T]:
    """
    Return the entry of ``available`` (keyed by status name) for the first
    candidate name that exists, or None if none of them do.
    """
    for name in candidates:
        if name in available:
            return available[name]
    return None


def compose_dated_remark(existing: Optional[str], note: str, on: date) -> str:
    """Append ``[YYYY-MM-DD] note`` as a new line after any existing remarks."""
    line = f"[{on.isoformat()}] {note}"
    if existing and existing.strip():
        return f"{existing.rstrip()}\n{line}"
    return line
