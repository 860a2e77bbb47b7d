"""Write normalized drafts to the visit store in bounded batches."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from visit_ledger.services.import_types import VisitDraft
from visit_ledger.services.visits import MAX_BATCH_SIZE, VisitStore

DEFAULT_BATCH_SIZE = 400

logger = logging.getLogger(__name__)


class BatchCommitError(Exception):
    """A batch failed to commit; earlier batches stay written."""

    def __init__(self, written: int, cause: BaseException) -> None:
        super().__init__(f"batch commit failed after {written} documents: {cause}")
        self.written = written
        self.cause = cause


@dataclass(frozen=True)
class WriteReport:
    created: int
    batches: int


def clamp_batch_size(batch_size: int) -> int:
    return max(1, min(int(batch_size), MAX_BATCH_SIZE))


def planned_batches(count: int, batch_size: int) -> int:
    size = clamp_batch_size(batch_size)
    return -(-count // size)


def write_drafts(
    store: VisitStore,
    drafts: Sequence[VisitDraft],
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> WriteReport:
    """Commit ``drafts`` in order, one batch at a time.

    Raises ``ValueError`` before anything is queued if a draft has no owner,
    and ``BatchCommitError`` if a commit fails midway.
    """
    ownerless = [index for index, draft in enumerate(drafts, start=1) if not draft.owner_uid]
    if ownerless:
        raise ValueError(f"draft #{ownerless[0]} has no owner uid")

    size = clamp_batch_size(batch_size)
    created = 0
    batches = 0
    batch = None
    for draft in drafts:
        if batch is None:
            batch = store.batch()
        batch.set(draft)
        if len(batch) >= size:
            created += _commit(batch, created)
            batches += 1
            batch = None
    if batch is not None and len(batch):
        created += _commit(batch, created)
        batches += 1

    logger.info("wrote %d visits in %d batches to %s", created, batches, store.collection)
    return WriteReport(created=created, batches=batches)


def _commit(batch, written: int) -> int:
    pending = len(batch)
    try:
        batch.commit()
    except Exception as exc:
        logger.error("batch commit failed after %d documents: %s", written, exc)
        raise BatchCommitError(written, exc) from exc
    return pending
