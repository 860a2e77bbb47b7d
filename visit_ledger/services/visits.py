"""Visit storage: a document-style collection on top of SQLAlchemy Core.

Every query is scoped to one owner. Writes from the importer go through
``WriteBatch`` so a batch lands in a single transaction.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete, insert, select, update
from sqlalchemy.engine import Engine

from visit_ledger.models import DEFAULT_COLLECTION, Visit, metadata, visits_table
from visit_ledger.services.field_parsers import round2
from visit_ledger.services.import_types import VisitDraft
from visit_ledger.services.visits_analytics import current_month, month_bounds

MAX_BATCH_SIZE = 500

_UPDATABLE_FIELDS = frozenset(
    {
        "owner_uid",
        "visit_date",
        "patient_name",
        "procedure_name",
        "amount",
        "percent",
        "doctor_income",
        "notes",
        "updated_at",
    }
)


class VisitError(Exception):
    """Base exception for visit storage operations."""


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.astimezone(timezone.utc).isoformat() if value is not None else None


def prepare_draft(
    *,
    visit_date: str,
    patient_name: str,
    procedure_name: str,
    amount: float,
    percent: float,
    notes: str = "",
    owner_uid: Optional[str] = None,
) -> VisitDraft:
    """Normalize interactive input the same way the importer does."""
    amount = round2(float(amount))
    percent = round2(float(percent))
    return VisitDraft(
        owner_uid=owner_uid,
        visit_date=visit_date,
        patient_name=(patient_name or "").strip(),
        procedure_name=(procedure_name or "").strip(),
        amount=amount,
        percent=percent,
        doctor_income=round2(amount * percent / 100),
        notes=(notes or "").strip(),
    )


def _draft_fields(draft: VisitDraft) -> Dict[str, Any]:
    return {
        "visit_date": draft.visit_date,
        "patient_name": draft.patient_name,
        "procedure_name": draft.procedure_name,
        "amount": draft.amount,
        "percent": draft.percent,
        "doctor_income": draft.doctor_income,
        "notes": draft.notes,
    }


@dataclass
class WriteBatch:
    """Queue of inserts/updates committed together.

    Timestamps left as ``None`` are filled with the commit time, the same way
    a server-side timestamp would be.
    """

    store: "VisitStore"
    _inserts: List[Dict[str, Any]] = field(default_factory=list)
    _updates: List[Tuple[str, Dict[str, Any]]] = field(default_factory=list)
    committed: bool = False

    def __len__(self) -> int:
        return len(self._inserts) + len(self._updates)

    def _check_capacity(self) -> None:
        if self.committed:
            raise VisitError("batch_already_committed")
        if len(self) >= MAX_BATCH_SIZE:
            raise VisitError("batch_full")

    def set(self, draft: VisitDraft, owner_uid: Optional[str] = None) -> str:
        self._check_capacity()
        owner = owner_uid or draft.owner_uid
        if not owner:
            raise VisitError("owner_required")
        visit_id = uuid.uuid4().hex
        payload = _draft_fields(draft)
        payload.update(
            id=visit_id,
            owner_uid=owner,
            created_at=_iso(draft.created_at),
            updated_at=_iso(draft.updated_at),
        )
        self._inserts.append(payload)
        return visit_id

    def update(self, visit_id: str, fields: Dict[str, Any]) -> None:
        self._check_capacity()
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise VisitError(f"unknown_fields:{','.join(sorted(unknown))}")
        self._updates.append((visit_id, dict(fields)))

    def commit(self) -> int:
        if self.committed:
            raise VisitError("batch_already_committed")
        table = self.store.table
        now = utc_now_iso()
        inserts = [
            {**row, "created_at": row["created_at"] or now, "updated_at": row["updated_at"] or now}
            for row in self._inserts
        ]
        with self.store.engine.begin() as conn:
            if inserts:
                conn.execute(insert(table), inserts)
            for visit_id, values in self._updates:
                values = {**values, "updated_at": values.get("updated_at") or now}
                conn.execute(update(table).where(table.c.id == visit_id).values(**values))
        self.committed = True
        return len(self)


class VisitStore:
    """Owner-scoped access to one visits collection."""

    def __init__(self, engine: Engine, collection: str = DEFAULT_COLLECTION) -> None:
        self.engine = engine
        self.collection = collection
        self.table = visits_table(collection)

    def ensure_collection(self) -> None:
        metadata.create_all(self.engine, tables=[self.table], checkfirst=True)

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    def list_range(self, owner_uid: str, start: str, end: str) -> List[Visit]:
        t = self.table
        stmt = (
            select(t)
            .where(t.c.owner_uid == owner_uid, t.c.visit_date >= start, t.c.visit_date <= end)
            .order_by(t.c.visit_date.desc(), t.c.created_at.desc())
        )
        with self.engine.connect() as conn:
            return [Visit.from_row(row) for row in conn.execute(stmt).mappings()]

    def list_month(self, owner_uid: str, month: str, fallback_month: Optional[str] = None) -> List[Visit]:
        start, end = month_bounds(month, fallback_month or current_month())
        return self.list_range(owner_uid, start, end)

    def get(self, owner_uid: str, visit_id: str) -> Visit:
        t = self.table
        stmt = select(t).where(t.c.id == visit_id, t.c.owner_uid == owner_uid)
        with self.engine.connect() as conn:
            row = conn.execute(stmt).mappings().first()
        if row is None:
            raise VisitError("visit_not_found")
        return Visit.from_row(row)

    def create(self, owner_uid: str, draft: VisitDraft) -> str:
        batch = self.batch()
        visit_id = batch.set(draft, owner_uid=owner_uid)
        batch.commit()
        return visit_id

    def update(self, owner_uid: str, visit_id: str, draft: VisitDraft) -> None:
        t = self.table
        values = {**_draft_fields(draft), "updated_at": utc_now_iso()}
        with self.engine.begin() as conn:
            result = conn.execute(
                update(t).where(t.c.id == visit_id, t.c.owner_uid == owner_uid).values(**values)
            )
            if result.rowcount == 0:
                raise VisitError("visit_not_found")

    def delete(self, owner_uid: str, visit_id: str) -> None:
        t = self.table
        with self.engine.begin() as conn:
            result = conn.execute(delete(t).where(t.c.id == visit_id, t.c.owner_uid == owner_uid))
            if result.rowcount == 0:
                raise VisitError("visit_not_found")

    def page_by_id(self, page_size: int, start_after: Optional[str] = None) -> List[Visit]:
        """Return up to ``page_size`` documents of any owner, ordered by id."""
        t = self.table
        stmt = select(t).order_by(t.c.id).limit(page_size)
        if start_after is not None:
            stmt = stmt.where(t.c.id > start_after)
        with self.engine.connect() as conn:
            return [Visit.from_row(row) for row in conn.execute(stmt).mappings()]
