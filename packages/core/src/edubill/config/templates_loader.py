"""Utilities for loading payment schedule templates from YAML files."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

from edubill.dates import as_utc

_REQUIRED_KEYS = ("account_id", "amount", "start_date")
_FREQUENCIES = {"weekly", "monthly", "quarterly", "annually"}


def _parse_datetime(value: Any, where: str) -> datetime:
    """Accept YAML dates, datetimes and ISO strings; naive values are UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError as exc:
            raise ValueError(f"{where}: invalid date {value!r}") from exc
    else:
        raise ValueError(f"{where}: invalid date {value!r}")
    return as_utc(parsed)


def load_schedule_templates(path: Path | str) -> list[dict[str, Any]]:
    """Load payment schedule templates from a YAML file.

    The file holds a top-level ``templates`` list. Each entry needs
    ``account_id``, ``amount`` and ``start_date``; ``frequency``,
    ``interval``, ``end_date``, ``occurrences``, ``agency_id``, ``currency``,
    ``escalation_percent`` and ``description`` are optional.

    Returns:
        Normalized mappings ready for ``schedules.template_from_dict``.
    """
    path = Path(path)
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path.name}: top level must be a mapping")

    raw_templates = data.get("templates", [])
    if not isinstance(raw_templates, list):
        raise ValueError(f"{path.name}: templates must be a list")

    normalized: list[dict[str, Any]] = []
    for idx, item in enumerate(raw_templates):
        where = f"{path.name}: templates[{idx}]"
        if not isinstance(item, dict):
            raise ValueError(f"{where} must be a mapping")

        missing = [key for key in _REQUIRED_KEYS if item.get(key) in (None, "")]
        if missing:
            raise ValueError(f"{where} missing {'/'.join(missing)}")

        try:
            amount = Decimal(str(item["amount"]))
        except InvalidOperation as exc:
            raise ValueError(f"{where} invalid amount {item['amount']!r}") from exc

        frequency = str(item.get("frequency", "monthly")).strip().lower()
        if frequency not in _FREQUENCIES:
            raise ValueError(f"{where} unknown frequency {frequency!r}")

        interval = item.get("interval", 1)
        if not isinstance(interval, int):
            raise ValueError(f"{where} interval must be an integer")

        occurrences = item.get("occurrences")
        if occurrences is not None and not isinstance(occurrences, int):
            raise ValueError(f"{where} occurrences must be an integer")

        entry: dict[str, Any] = {
            "account_id": str(item["account_id"]),
            "amount": amount,
            "start_date": _parse_datetime(item["start_date"], where),
            "frequency": frequency,
            "interval": interval,
            "end_date": (
                _parse_datetime(item["end_date"], where)
                if item.get("end_date") is not None
                else None
            ),
            "occurrences": occurrences,
            "currency": str(item.get("currency", "USD")),
            "escalation_percent": Decimal(str(item.get("escalation_percent", "0"))),
            "description": str(item.get("description", "")),
        }
        for key in ("id", "agency_id", "offer_letter_id"):
            if item.get(key):
                entry[key] = str(item[key])
        normalized.append(entry)

    return normalized
