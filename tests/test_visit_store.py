from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from visit_ledger.models import validate_collection
from visit_ledger.services.visits import MAX_BATCH_SIZE, VisitError, VisitStore, prepare_draft


def test_prepare_draft_recomputes_income():
    draft = prepare_draft(
        visit_date="2026-02-19",
        patient_name="  Іваненко Петро ",
        procedure_name="Чистка",
        amount="1150",
        percent=30,
        notes=" ok ",
    )
    assert draft.patient_name == "Іваненко Петро"
    assert draft.doctor_income == 345.0
    assert draft.notes == "ok"


def test_create_get_update_delete(store):
    draft = prepare_draft(
        visit_date="2026-02-19", patient_name="Коротін Олег", procedure_name="Огляд", amount=1000, percent=20
    )
    visit_id = store.create("owner-1", draft)

    visit = store.get("owner-1", visit_id)
    assert visit.doctor_income == 200.0
    assert visit.created_at == visit.updated_at

    changed = prepare_draft(
        visit_date="2026-02-20", patient_name="Коротін Олег", procedure_name="Огляд", amount=1000, percent=35
    )
    store.update("owner-1", visit_id, changed)
    updated = store.get("owner-1", visit_id)
    assert (updated.visit_date, updated.doctor_income) == ("2026-02-20", 350.0)
    assert updated.created_at == visit.created_at

    store.delete("owner-1", visit_id)
    with pytest.raises(VisitError, match="visit_not_found"):
        store.get("owner-1", visit_id)


def test_queries_are_owner_scoped(store, add_visit):
    visit_id = add_visit(owner="owner-1")
    add_visit(owner="owner-2")

    with pytest.raises(VisitError):
        store.get("owner-2", visit_id)
    with pytest.raises(VisitError):
        store.delete("owner-2", visit_id)
    assert [v.id for v in store.list_month("owner-1", "2026-02")] == [visit_id]


def test_list_range_orders_by_date_then_creation(store, add_visit):
    older = add_visit(visit_date="2026-02-10", patient="A")
    first_same_day = add_visit(visit_date="2026-02-19", patient="B")
    second_same_day = add_visit(visit_date="2026-02-19", patient="C")
    add_visit(visit_date="2026-03-01", patient="D")

    ids = [v.id for v in store.list_range("owner-1", "2026-02-01", "2026-02-28")]
    assert ids[0] in (first_same_day, second_same_day)
    assert set(ids[:2]) == {first_same_day, second_same_day}
    assert ids[2] == older


def test_imported_timestamps_are_stored_in_utc(store):
    base = prepare_draft(visit_date="2026-02-20", patient_name="A", procedure_name="B", amount=100, percent=10)
    older = replace(base, patient_name="Older", created_at=datetime(2026, 2, 20, 1, 0, tzinfo=timezone.utc))
    newer = replace(
        base,
        patient_name="Newer",
        created_at=datetime(2026, 2, 19, 23, 0, tzinfo=timezone(timedelta(hours=-5))),
    )
    batch = store.batch()
    batch.set(older, owner_uid="owner-1")
    newer_id = batch.set(newer, owner_uid="owner-1")
    batch.commit()

    visits = store.list_range("owner-1", "2026-02-01", "2026-02-28")
    assert [v.patient_name for v in visits] == ["Newer", "Older"]
    assert store.get("owner-1", newer_id).created_at == "2026-02-20T04:00:00+00:00"


def test_batch_limits(store):
    draft = prepare_draft(visit_date="2026-02-19", patient_name="A", procedure_name="B", amount=1, percent=1)
    batch = store.batch()
    for _ in range(MAX_BATCH_SIZE):
        batch.set(draft, owner_uid="owner-1")
    with pytest.raises(VisitError, match="batch_full"):
        batch.set(draft, owner_uid="owner-1")
    assert batch.commit() == MAX_BATCH_SIZE
    with pytest.raises(VisitError):
        batch.commit()


def test_batch_requires_owner(store):
    draft = prepare_draft(visit_date="2026-02-19", patient_name="A", procedure_name="B", amount=1, percent=1)
    with pytest.raises(VisitError, match="owner_required"):
        store.batch().set(draft)


def test_page_by_id_walks_every_owner(store, add_visit):
    ids = sorted(add_visit(owner=f"owner-{i % 2}") for i in range(5))
    first = store.page_by_id(3)
    rest = store.page_by_id(3, start_after=first[-1].id)
    assert [v.id for v in first + rest] == ids


def test_custom_collection_is_isolated(app):
    from visit_ledger.extensions import db

    other = VisitStore(db.engine, "visits_archive")
    other.ensure_collection()
    draft = prepare_draft(visit_date="2026-02-19", patient_name="A", procedure_name="B", amount=1, percent=1)
    other.create("owner-1", draft)
    assert len(other.list_month("owner-1", "2026-02")) == 1
    assert VisitStore(db.engine).list_month("owner-1", "2026-02") == []


@pytest.mark.parametrize("name", ["", "visits;drop", "1visits", "a b"])
def test_collection_names_are_validated(name):
    with pytest.raises(ValueError):
        validate_collection(name)
