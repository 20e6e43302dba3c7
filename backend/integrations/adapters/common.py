"""Small coercion helpers for loosely typed platform payloads."""

from __future__ import annotations

from typing import Any

from integrations.reconciliation import parse_timestamp
from integrations.types import Address, Coordinates


def as_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value) if value is not None and value != "" else default
    except (TypeError, ValueError):
        return default


def as_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def as_datetime(value: Any):
    return parse_timestamp(value)


def coordinates_from(raw: Any, lat_key: str = "latitude", lng_key: str = "longitude") -> Coordinates | None:
    if not isinstance(raw, dict) or raw.get(lat_key) is None or raw.get(lng_key) is None:
        return None
    return Coordinates(latitude=as_float(raw[lat_key]), longitude=as_float(raw[lng_key]))


def address_from(raw: Any, **keys: str) -> Address | None:
    """Build an Address from a native dict; ``keys`` maps our field names to native ones."""
    if not isinstance(raw, dict) or not raw:
        return None
    names = {
        "street": "street",
        "number": "number",
        "neighborhood": "neighborhood",
        "city": "city",
        "state": "state",
        "zip_code": "zipCode",
        "complement": "complement",
        "reference": "reference",
        **keys,
    }
    return Address(
        street=str(raw.get(names["street"]) or ""),
        number=str(raw.get(names["number"]) or ""),
        neighborhood=str(raw.get(names["neighborhood"]) or ""),
        city=str(raw.get(names["city"]) or ""),
        state=str(raw.get(names["state"]) or ""),
        zip_code=str(raw.get(names["zip_code"]) or ""),
        complement=as_str(raw.get(names["complement"])),
        reference=as_str(raw.get(names["reference"])),
        coordinates=coordinates_from(raw.get("coordinates")),
    )
