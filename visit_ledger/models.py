"""SQLAlchemy table definitions and the persisted visit record."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from typing import Any, Mapping

from sqlalchemy import Column, Float, Index, MetaData, String, Table, Text

DEFAULT_COLLECTION = "visits"

metadata = MetaData()

_COLLECTION_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")


def validate_collection(name: str) -> str:
    """Collection names become table names, so only plain identifiers pass."""
    cleaned = (name or "").strip()
    if not _COLLECTION_RE.match(cleaned):
        raise ValueError(f"Invalid collection name: {name!r}")
    return cleaned


def visits_table(collection: str = DEFAULT_COLLECTION) -> Table:
    """Return the table backing a visits collection, defining it on first use."""
    name = validate_collection(collection)
    existing = metadata.tables.get(name)
    if existing is not None:
        return existing
    return Table(
        name,
        metadata,
        Column("id", String, primary_key=True),
        # Nullable: legacy documents predate per-user ownership.
        Column("owner_uid", String, nullable=True),
        Column("visit_date", String, nullable=False),
        Column("patient_name", Text, nullable=False),
        Column("procedure_name", Text, nullable=False),
        Column("amount", Float, nullable=False),
        Column("percent", Float, nullable=False),
        Column("doctor_income", Float, nullable=False),
        Column("notes", Text, nullable=False, default=""),
        Column("created_at", String, nullable=False),
        Column("updated_at", String, nullable=False),
        Index(f"idx_{name}_owner_date", "owner_uid", "visit_date"),
    )


user_settings = Table(
    "user_settings",
    metadata,
    Column("owner_uid", String, primary_key=True),
    Column("percent_presets", Text, nullable=False),
    Column("export_format", String, nullable=False, default="csv"),
    Column("updated_at", String, nullable=False),
)


@dataclass
class Visit:
    """A stored visit. Timestamps are ISO-8601 UTC strings."""

    id: str
    owner_uid: str | None
    visit_date: str
    patient_name: str
    procedure_name: str
    amount: float
    percent: float
    doctor_income: float
    notes: str = ""
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Visit":
        return cls(
            id=row["id"],
            owner_uid=row["owner_uid"],
            visit_date=row["visit_date"],
            patient_name=row["patient_name"],
            procedure_name=row["procedure_name"],
            amount=float(row["amount"]),
            percent=float(row["percent"]),
            doctor_income=float(row["doctor_income"]),
            notes=row["notes"] or "",
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
