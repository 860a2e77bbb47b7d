import io
import json
from pathlib import Path


def _visit_form(**overrides):
    data = {
        "visit_date": "2026-02-19",
        "patient_name": "Іваненко Петро",
        "procedure_name": "",
        "amount": "1150",
        "percent": "30",
        "notes": "перший візит",
    }
    data.update(overrides)
    return data


def test_requests_without_owner_are_rejected(client):
    resp = client.get("/visits/?month=2026-02")
    assert resp.status_code == 401
    assert resp.get_json()["success"] is False


def test_create_then_list_month(client, owner_headers):
    resp = client.post("/visits/", data=_visit_form(), headers=owner_headers)
    assert resp.status_code == 201
    visit_id = resp.get_json()["id"]

    resp = client.get("/visits/?month=2026-02", headers=owner_headers)
    body = resp.get_json()
    assert body["success"] is True
    assert body["month"] == "2026-02"
    assert body["previous_month"] == "2026-01"
    assert body["next_month"] == "2026-03"
    (visit,) = body["visits"]
    assert visit["id"] == visit_id
    assert visit["doctor_income"] == 345.0
    assert visit["procedure_name"] == "Консультація"
    assert body["summary"]["total_income"] == 345.0


def test_create_uses_surgery_hint(client, owner_headers):
    client.post("/visits/", data=_visit_form(patient_name="Коротін (операція)"), headers=owner_headers)
    body = client.get("/visits/?month=2026-02", headers=owner_headers).get_json()
    assert body["visits"][0]["procedure_name"] == "Операція"


def test_create_validation_errors(client, owner_headers):
    resp = client.post("/visits/", data=_visit_form(amount="0", percent="120"), headers=owner_headers)
    assert resp.status_code == 400
    errors = resp.get_json()["errors"]
    assert any(e.startswith("amount:") for e in errors)
    assert any(e.startswith("percent:") for e in errors)


def test_zero_percent_is_allowed(client, owner_headers):
    resp = client.post("/visits/", data=_visit_form(percent="0"), headers=owner_headers)
    assert resp.status_code == 201


def test_list_filters_sorts_and_trends(client, owner_headers, add_visit):
    add_visit(visit_date="2026-01-15", patient="Старий", amount=1000, percent=20)
    add_visit(visit_date="2026-02-19", patient="Коротін Олег", amount=2000, percent=25, notes="повторно")
    add_visit(visit_date="2026-02-20", patient="Ґудзь Анна", amount=1000, percent=20)

    body = client.get("/visits/?month=2026-02&sort=patientAsc", headers=owner_headers).get_json()
    assert [v["patient_name"] for v in body["visits"]] == ["Ґудзь Анна", "Коротін Олег"]
    assert body["summary"]["total_visits"] == 2
    assert body["trends"]["visits"] == 100

    body = client.get("/visits/", query_string={"month": "2026-02", "q": "повтор"}, headers=owner_headers).get_json()
    assert [v["patient_name"] for v in body["visits"]] == ["Коротін Олег"]
    assert body["summary"]["total_visits"] == 2


def test_other_owner_sees_nothing(client, add_visit):
    add_visit(owner="owner-1")
    body = client.get("/visits/?month=2026-02", headers={"X-Owner-Uid": "owner-2"}).get_json()
    assert body["visits"] == []


def test_update_and_delete(client, owner_headers, add_visit):
    visit_id = add_visit()
    resp = client.post(f"/visits/{visit_id}", data=_visit_form(percent="50"), headers=owner_headers)
    assert resp.status_code == 200
    body = client.get("/visits/?month=2026-02", headers=owner_headers).get_json()
    assert body["visits"][0]["doctor_income"] == 575.0

    resp = client.post(f"/visits/{visit_id}/delete", headers=owner_headers)
    assert resp.get_json() == {"success": True}
    resp = client.post(f"/visits/{visit_id}/delete", headers=owner_headers)
    assert resp.status_code == 404
    assert resp.get_json()["errors"] == ["visit_not_found"]


def test_update_foreign_visit_is_not_found(client, add_visit):
    visit_id = add_visit(owner="owner-1")
    resp = client.post(f"/visits/{visit_id}", data=_visit_form(), headers={"X-Owner-Uid": "owner-2"})
    assert resp.status_code == 404


def test_calendar(client, owner_headers, add_visit):
    add_visit(visit_date="2026-02-19", amount=1000, percent=30)
    body = client.get("/visits/calendar?month=2026-02", headers=owner_headers).get_json()
    cells = [cell for week in body["weeks"] for cell in week]
    (busy,) = [cell for cell in cells if cell["visits"]]
    assert busy["date"] == "2026-02-19"
    assert busy["income"] == 300.0


def test_export_csv_reimports(client, owner_headers, add_visit):
    add_visit(visit_date="2026-02-19", patient="Коротін Олег", amount=2000, percent=25, notes="a;b")
    resp = client.get("/visits/export.csv?month=2026-02", headers=owner_headers)
    assert resp.mimetype == "text/csv"
    text = resp.get_data(as_text=True)
    assert text.lstrip("\ufeff").startswith("Date;Patient;Amount;Percent")

    resp = client.post(
        "/visits/import",
        data={"file": (io.BytesIO(text.encode("utf-8")), "visits-2026-02.csv")},
        headers={"X-Owner-Uid": "owner-2"},
        content_type="multipart/form-data",
    )
    body = resp.get_json()
    assert body["success"] is True
    assert body["summary"]["rows"] == 1
    assert body["summary"]["total_income"] == 500.0
    assert body["preview"][0]["notes"] == "a;b"


def test_import_dry_run_then_apply(app, client, owner_headers):
    csv_text = "Дата;ПІБ;Сума;%\n19.02.2026;Іваненко Петро;1150;345\n;Коротін Олег;2000;25\nбитий;рядок;1;1\n"

    def upload(**form):
        data = {"file": (io.BytesIO(csv_text.encode("utf-8")), "journal.csv"), **form}
        return client.post("/visits/import", data=data, headers=owner_headers, content_type="multipart/form-data")

    dry = upload().get_json()
    assert dry["applied"] is False
    assert dry["created"] == 0
    assert dry["summary"]["rows"] == 2
    assert dry["warnings"] == ['Line 4: invalid date "битий" -> skipped.']
    assert client.get("/visits/?month=2026-02", headers=owner_headers).get_json()["visits"] == []

    applied = upload(apply="1").get_json()
    assert applied["created"] == 2
    assert applied["summary"] == dry["summary"]
    visits = client.get("/visits/?month=2026-02", headers=owner_headers).get_json()["visits"]
    assert len(visits) == 2

    reports = list((Path(app.config["DATA_ROOT"]) / "import_reports").glob("visit-import-*.json"))
    assert reports
    saved = json.loads(reports[-1].read_text(encoding="utf-8"))
    assert saved["summary"]["rows"] == 2


def test_import_rejects_bad_input(client, owner_headers):
    resp = client.post("/visits/import", data={}, headers=owner_headers, content_type="multipart/form-data")
    assert resp.status_code == 400
    assert resp.get_json()["errors"] == ["file_required"]

    resp = client.post(
        "/visits/import",
        data={"file": (io.BytesIO(b"[1"), "dump.json")},
        headers=owner_headers,
        content_type="multipart/form-data",
    )
    assert resp.status_code == 400
    assert resp.get_json()["errors"][0].startswith("Invalid JSON")

    resp = client.post(
        "/visits/import",
        data={"file": (io.BytesIO(b"a;b"), "x.csv"), "year": "1999"},
        headers=owner_headers,
        content_type="multipart/form-data",
    )
    assert resp.get_json()["errors"] == ["invalid_year"]
