"""
Edit window for observations synced in from the external clinical system.

- No sync date: a locally created record, editable by any clinician
- Within OBSERVATION_EDIT_WINDOW_HOURS of sync: editable by any clinician
- After that: only clinicians on the record's editable_by list

Pure functions of the stored timestamps and the supplied time.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Iterable

from passport_access.config import settings


class EditState(str, Enum):
    UNSYNCED = "unsynced"
    OPEN = "open"
    LOCKED = "locked"


@dataclass(frozen=True)
class EditAccess:
    state: EditState
    is_editable: bool
    hours_since_sync: Optional[float]
    reason: str


def _window(window: Optional[timedelta]) -> timedelta:
    return window if window is not None else timedelta(hours=settings.OBSERVATION_EDIT_WINDOW_HOURS)


def check_edit_access(sync_date: Optional[datetime], now: datetime, window: Optional[timedelta] = None) -> EditAccess:
    """Whether the record is open to every clinician right now"""
    if sync_date is None:
        return EditAccess(EditState.UNSYNCED, True, None, "Record was not synced from an external system")

    window = _window(window)
    elapsed = now - sync_date
    hours = round(elapsed.total_seconds() / 3600, 2)
    window_hours = window.total_seconds() / 3600
    if elapsed <= window:
        return EditAccess(
            EditState.OPEN, True, hours,
            f"Within {window_hours:g}-hour edit window ({hours:g} hours since sync)"
        )
    return EditAccess(
        EditState.LOCKED, False, hours,
        f"Edit window closed: synced {hours:g} hours ago, limit is {window_hours:g} hours"
    )


def can_edit(
    sync_date: Optional[datetime],
    editable_by: Iterable[str],
    clinician_id: str,
    now: datetime,
    window: Optional[timedelta] = None,
) -> bool:
    if check_edit_access(sync_date, now, window).is_editable:
        return True
    return clinician_id in set(editable_by or ())


def edit_info(
    sync_date: Optional[datetime],
    editable_by: Iterable[str],
    clinician_id: str,
    now: datetime,
) -> dict:
    """Edit hints for a UI"""
    access = check_edit_access(sync_date, now)
    allowed = can_edit(sync_date, editable_by, clinician_id, now)
    window = _window(None)
    remaining = None
    if access.state == EditState.OPEN:
        remaining = max(0.0, round((sync_date + window - now).total_seconds() / 3600, 2))
    return {
        "can_edit": allowed,
        "state": access.state.value,
        "is_open_to_all": access.is_editable,
        "hours_since_sync": access.hours_since_sync,
        "hours_remaining": remaining,
        "on_allow_list": clinician_id in set(editable_by or ()),
        "reason": access.reason if allowed else "Edit window closed and you are not on this record's editor list",
    }


def medication_status_for(sync_date: Optional[datetime], now: datetime) -> str:
    """Synced medications are Active for MEDICATION_ACTIVE_HOURS, then Past"""
    if sync_date is None:
        return "Active"
    if now - sync_date >= timedelta(hours=settings.MEDICATION_ACTIVE_HOURS):
        return "Past"
    return "Active"
