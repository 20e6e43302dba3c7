"""
Order Timestamp Reconciliation

Derives ready / picked-up / delivered timestamps and the four operational
durations from platform payloads whose status histories are unordered,
partial or missing.

Pure module: no I/O, no clock reads.

Algorithm:
  1. Sort the status history ascending by timestamp.
  2. Classify each label through the platform alias set (case-insensitive);
     the first occurrence of each milestone wins.
  3. Slots without a history milestone fall back to explicit named fields.
  4. ready-at missing but picked-up-at known → ready-at = picked-up-at.
  5. Durations in minutes; a missing endpoint gives None, never zero.
  6. prep == 0 and pickup == 0 means the payload carries no real timing
     signal: every duration and every derived timestamp is reset to None.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Iterable, Mapping, Sequence


class Milestone(str, Enum):
    READY = "ready"
    PICKED_UP = "picked_up"
    DELIVERED = "delivered"


class Shift(str, Enum):
    DAY = "DAY"
    NIGHT = "NIGHT"


# ── Platform alias sets ───────────────────────────────────────────────────

FOODY_ALIASES: dict[str, Milestone] = {
    "dispatching": Milestone.READY,
    "ready": Milestone.READY,
    "dispatched": Milestone.PICKED_UP,
    "pickedup": Milestone.PICKED_UP,
    "collected": Milestone.PICKED_UP,
    "delivered": Milestone.DELIVERED,
    "closed": Milestone.DELIVERED,
}

AGILIZONE_ALIASES: dict[str, Milestone] = {
    "ready": Milestone.READY,
    "ready_for_pickup": Milestone.READY,
    "dispatched": Milestone.PICKED_UP,
    "picked_up": Milestone.PICKED_UP,
    "on_the_way": Milestone.PICKED_UP,
    "delivered": Milestone.DELIVERED,
    "finished": Milestone.DELIVERED,
}

IFOOD_ALIASES: dict[str, Milestone] = {
    "rdy": Milestone.READY,
    "ready_to_pickup": Milestone.READY,
    "dsp": Milestone.PICKED_UP,
    "dispatched": Milestone.PICKED_UP,
    "con": Milestone.DELIVERED,
    "concluded": Milestone.DELIVERED,
}

SAIPOS_ALIASES: dict[str, Milestone] = {
    "pronto": Milestone.READY,
    "ready": Milestone.READY,
    "saiu_entrega": Milestone.PICKED_UP,
    "em_entrega": Milestone.PICKED_UP,
    "dispatched": Milestone.PICKED_UP,
    "entregue": Milestone.DELIVERED,
    "finalizado": Milestone.DELIVERED,
    "delivered": Milestone.DELIVERED,
}

DEFAULT_ALIASES: dict[str, Milestone] = {
    "ready": Milestone.READY,
    "dispatched": Milestone.PICKED_UP,
    "picked_up": Milestone.PICKED_UP,
    "pickedup": Milestone.PICKED_UP,
    "delivered": Milestone.DELIVERED,
    "concluded": Milestone.DELIVERED,
}

ALIAS_SETS: dict[str, dict[str, Milestone]] = {
    "foody": FOODY_ALIASES,
    "agilizone": AGILIZONE_ALIASES,
    "ifood": IFOOD_ALIASES,
    "saipos": SAIPOS_ALIASES,
    "saipos_logistics": SAIPOS_ALIASES,
}


def aliases_for(platform: str | None) -> Mapping[str, Milestone]:
    return ALIAS_SETS.get((platform or "").lower(), DEFAULT_ALIASES)


# ── Data containers ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class StatusEvent:
    label: str
    at: datetime


@dataclass
class ReconciledTimes:
    arrived_at: datetime
    ready_at: datetime | None = None
    picked_up_at: datetime | None = None
    delivered_at: datetime | None = None
    prep_time: float | None = None
    pickup_time: float | None = None
    delivery_time: float | None = None
    total_time: float | None = None
    invalidated: bool = False

    @property
    def durations(self) -> dict[str, float | None]:
        return {
            "prep_time": self.prep_time,
            "pickup_time": self.pickup_time,
            "delivery_time": self.delivery_time,
            "total_time": self.total_time,
        }


@dataclass(frozen=True)
class WorkdayInfo:
    shift: Shift
    workday: date


# ── Timestamp helpers ─────────────────────────────────────────────────────


def parse_timestamp(value) -> datetime | None:
    """Parse ISO-8601 strings (``Z`` suffix accepted) into aware UTC datetimes.

    Naive inputs are treated as UTC. Empty or unparseable values give None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def diff_minutes(start: datetime | None, end: datetime | None) -> float | None:
    if start is None or end is None:
        return None
    return round((end - start).total_seconds() / 60, 2)


def average_minutes(values: Iterable[float | None]) -> float | None:
    present = [v for v in values if v is not None]
    if not present:
        return None
    return round(sum(present) / len(present), 2)


def format_minutes(minutes: float | None) -> str:
    if minutes is None:
        return "-"
    total_seconds = int(round(minutes * 60))
    sign = "-" if total_seconds < 0 else ""
    total_seconds = abs(total_seconds)
    hours, remainder = divmod(total_seconds, 3600)
    mins, secs = divmod(remainder, 60)
    if hours:
        return f"{sign}{hours}h {mins:02d}m"
    return f"{sign}{mins}m {secs:02d}s"


def to_naive_utc(value: datetime | None) -> datetime | None:
    """Storage form: the database columns hold naive UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# ── Core algorithm ────────────────────────────────────────────────────────


def reconcile(
    arrived_at: datetime,
    history: Sequence[StatusEvent] | None = None,
    explicit: Mapping[Milestone, datetime | None] | None = None,
    aliases: Mapping[str, Milestone] | None = None,
) -> ReconciledTimes:
    aliases = aliases if aliases is not None else DEFAULT_ALIASES
    explicit = explicit or {}

    found: dict[Milestone, datetime] = {}
    for event in sorted(history or [], key=lambda e: e.at):
        milestone = aliases.get((event.label or "").strip().lower())
        if milestone is not None and milestone not in found:
            found[milestone] = event.at

    for milestone in Milestone:
        if milestone not in found and explicit.get(milestone) is not None:
            found[milestone] = explicit[milestone]

    ready_at = found.get(Milestone.READY)
    picked_up_at = found.get(Milestone.PICKED_UP)
    delivered_at = found.get(Milestone.DELIVERED)

    if ready_at is None and picked_up_at is not None:
        ready_at = picked_up_at

    times = ReconciledTimes(
        arrived_at=arrived_at,
        ready_at=ready_at,
        picked_up_at=picked_up_at,
        delivered_at=delivered_at,
        prep_time=diff_minutes(arrived_at, ready_at),
        pickup_time=diff_minutes(ready_at, picked_up_at),
        delivery_time=diff_minutes(picked_up_at, delivered_at),
        total_time=diff_minutes(arrived_at, delivered_at),
    )

    if times.prep_time == 0 and times.pickup_time == 0:
        return ReconciledTimes(arrived_at=arrived_at, invalidated=True)
    return times


def classify_workday(arrived_at: datetime, utc_offset_hours: int = -3, night_start_hour: int = 16) -> WorkdayInfo:
    """Shift and business day for an arrival, using a fixed UTC offset."""
    arrived_utc = parse_timestamp(arrived_at)
    local = arrived_utc + timedelta(hours=utc_offset_hours)
    shift = Shift.DAY if local.hour < night_start_hour else Shift.NIGHT
    return WorkdayInfo(shift=shift, workday=local.date())


def business_day_bounds(day: date, utc_offset_hours: int = -3) -> tuple[datetime, datetime]:
    """Aware [00:00:00, 23:59:59] of a business day at the fixed offset."""
    tz = timezone(timedelta(hours=utc_offset_hours))
    start = datetime(day.year, day.month, day.day, tzinfo=tz)
    return start, start + timedelta(hours=23, minutes=59, seconds=59)


def history_from_payload(
    entries: Iterable[Mapping] | None,
    label_key: str = "status",
    time_key: str = "date",
) -> list[StatusEvent]:
    """Build StatusEvents from a native history list, skipping unusable rows."""
    events: list[StatusEvent] = []
    for entry in entries or []:
        if not isinstance(entry, Mapping):
            continue
        at = parse_timestamp(entry.get(time_key))
        label = entry.get(label_key)
        if at is None or not label:
            continue
        events.append(StatusEvent(label=str(label), at=at))
    return events


@dataclass
class TimingInput:
    """Everything reconcile() needs, extracted from one native payload."""

    arrived_at: datetime
    history: list[StatusEvent] = field(default_factory=list)
    explicit: dict[Milestone, datetime | None] = field(default_factory=dict)
