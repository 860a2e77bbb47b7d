"""Assign an owner to legacy visits that were written before per-user data."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from visit_ledger.services.batch_writer import clamp_batch_size
from visit_ledger.services.field_parsers import normalize_uid
from visit_ledger.services.import_types import ImportFatalError
from visit_ledger.services.visits import VisitStore, utc_now_iso

DEFAULT_PAGE_SIZE = 400

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OwnerMap:
    default_uid: Optional[str] = None
    by_doc_id: Dict[str, str] = field(default_factory=dict)


@dataclass
class MigrationReport:
    scanned: int = 0
    already_owned: int = 0
    ownerless: int = 0
    assignable: int = 0
    skipped: int = 0
    updated: int = 0
    applied: bool = False

    def to_dict(self) -> dict:
        return dict(self.__dict__)


def _clean_map(raw: dict) -> Dict[str, str]:
    cleaned = {}
    for doc_id, uid in raw.items():
        uid = normalize_uid(uid)
        if uid:
            cleaned[str(doc_id)] = uid
    return cleaned


def parse_owner_map(root) -> OwnerMap:
    if not isinstance(root, dict):
        raise ImportFatalError("Map file must contain a JSON object.")
    if "defaultUid" in root or "byDocId" in root:
        by_doc_id = root.get("byDocId") or {}
        if not isinstance(by_doc_id, dict):
            raise ImportFatalError('"byDocId" must be an object of docId -> uid.')
        return OwnerMap(default_uid=normalize_uid(root.get("defaultUid")), by_doc_id=_clean_map(by_doc_id))
    return OwnerMap(by_doc_id=_clean_map(root))


def load_owner_map(path: Optional[str]) -> OwnerMap:
    if not path:
        return OwnerMap()
    map_path = Path(path)
    if not map_path.is_file():
        raise ImportFatalError(f"Map file not found: {path}")
    try:
        root = json.loads(map_path.read_text(encoding="utf-8"))
    except ValueError as exc:
        raise ImportFatalError(f"Invalid map file JSON: {exc}") from exc
    return parse_owner_map(root)


def target_uid_for(doc_id: str, all_to_uid: Optional[str], mapping: OwnerMap) -> Optional[str]:
    return mapping.by_doc_id.get(doc_id) or normalize_uid(all_to_uid) or mapping.default_uid


def migrate_owner_uid(
    store: VisitStore,
    *,
    all_to_uid: Optional[str] = None,
    mapping: Optional[OwnerMap] = None,
    page_size: int = DEFAULT_PAGE_SIZE,
    limit: Optional[int] = None,
    apply: bool = False,
) -> MigrationReport:
    """Scan the whole collection by id and fill in missing owner uids.

    ``limit`` caps the number of assignable documents; ownerless documents past
    the cap are still counted. Without ``apply`` nothing is written.
    """
    mapping = mapping or OwnerMap()
    size = clamp_batch_size(page_size)
    report = MigrationReport(applied=apply)
    cursor: Optional[str] = None

    while True:
        page = store.page_by_id(size, start_after=cursor)
        if not page:
            break
        batch = store.batch() if apply else None
        for visit in page:
            cursor = visit.id
            report.scanned += 1
            if normalize_uid(visit.owner_uid):
                report.already_owned += 1
                continue
            report.ownerless += 1
            if limit and report.assignable >= limit:
                continue
            target = target_uid_for(visit.id, all_to_uid, mapping)
            if not target:
                report.skipped += 1
                continue
            report.assignable += 1
            if batch is not None:
                batch.update(visit.id, {"owner_uid": target, "updated_at": utc_now_iso()})
        if batch is not None and len(batch):
            report.updated += batch.commit()
            logger.info("assigned owners to %d visits (total %d)", len(batch), report.updated)
        if len(page) < size:
            break

    return report
