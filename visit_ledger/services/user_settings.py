"""Per-owner ledger settings (percent presets, export format)."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, List

from sqlalchemy import select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine

from visit_ledger.models import user_settings

DEFAULT_PERCENT_PRESETS = (10, 20, 30, 40, 50)
EXPORT_FORMATS = ("csv", "excel")


class SettingsError(Exception):
    """Base exception for settings operations."""


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class UserSettings:
    percent_presets: List[float] = field(default_factory=lambda: list(DEFAULT_PERCENT_PRESETS))
    export_format: str = "csv"

    def to_dict(self) -> dict:
        return {"percent_presets": list(self.percent_presets), "export_format": self.export_format}


def normalize_presets(values: Iterable[Any]) -> List[float]:
    presets = set()
    for value in values:
        if isinstance(value, bool):
            raise SettingsError("invalid_percent_presets")
        try:
            number = float(value)
        except (TypeError, ValueError) as exc:
            raise SettingsError("invalid_percent_presets") from exc
        if not math.isfinite(number) or not 0 < number <= 100:
            raise SettingsError("invalid_percent_presets")
        presets.add(int(number) if number.is_integer() else number)
    if not presets:
        raise SettingsError("invalid_percent_presets")
    return sorted(presets)


def get_settings(engine: Engine, owner_uid: str) -> UserSettings:
    with engine.connect() as conn:
        row = conn.execute(
            select(user_settings).where(user_settings.c.owner_uid == owner_uid)
        ).mappings().first()
    if row is None:
        return UserSettings()
    try:
        presets = normalize_presets(json.loads(row["percent_presets"]))
    except (ValueError, SettingsError):
        presets = list(DEFAULT_PERCENT_PRESETS)
    return UserSettings(percent_presets=presets, export_format=row["export_format"] or "csv")


def save_settings(engine: Engine, owner_uid: str, data: dict) -> UserSettings:
    current = get_settings(engine, owner_uid)
    presets = current.percent_presets
    if "percent_presets" in data:
        raw = data["percent_presets"]
        if isinstance(raw, str):
            raw = [part for part in raw.replace(";", ",").split(",") if part.strip()]
        if not isinstance(raw, (list, tuple)):
            raise SettingsError("invalid_percent_presets")
        presets = normalize_presets(raw)
    export_format = str(data.get("export_format", current.export_format)).strip().lower()
    if export_format not in EXPORT_FORMATS:
        raise SettingsError("invalid_export_format")

    values = {
        "owner_uid": owner_uid,
        "percent_presets": json.dumps(presets),
        "export_format": export_format,
        "updated_at": _utc_now(),
    }
    stmt = sqlite_insert(user_settings).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[user_settings.c.owner_uid],
        set_={k: stmt.excluded[k] for k in ("percent_presets", "export_format", "updated_at")},
    )
    with engine.begin() as conn:
        conn.execute(stmt)
    return UserSettings(percent_presets=presets, export_format=export_format)
