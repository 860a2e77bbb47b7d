import pytest

from visit_ledger.extensions import db
from visit_ledger.services.user_settings import (
    SettingsError,
    get_settings,
    normalize_presets,
    save_settings,
)


def test_defaults_for_new_owner(client, owner_headers):
    resp = client.get("/settings/", headers=owner_headers)
    assert resp.status_code == 200
    assert resp.get_json()["settings"] == {"percent_presets": [10, 20, 30, 40, 50], "export_format": "csv"}


def test_save_and_reload(client, owner_headers):
    resp = client.post(
        "/settings/",
        json={"percent_presets": [35, 15, 15, 42.5], "export_format": "Excel"},
        headers=owner_headers,
    )
    assert resp.status_code == 200
    assert resp.get_json()["settings"] == {"percent_presets": [15, 35, 42.5], "export_format": "excel"}

    again = client.get("/settings/", headers=owner_headers).get_json()
    assert again["settings"]["percent_presets"] == [15, 35, 42.5]

    other = client.get("/settings/", headers={"X-Owner-Uid": "owner-2"}).get_json()
    assert other["settings"]["export_format"] == "csv"


def test_form_post_accepts_comma_list(client, owner_headers):
    resp = client.post("/settings/", data={"percent_presets": "25; 5,"}, headers=owner_headers)
    assert resp.status_code == 200
    assert resp.get_json()["settings"]["percent_presets"] == [5, 25]


@pytest.mark.parametrize(
    "payload, error",
    [
        ({"percent_presets": [0, 10]}, "invalid_percent_presets"),
        ({"percent_presets": [101]}, "invalid_percent_presets"),
        ({"percent_presets": []}, "invalid_percent_presets"),
        ({"percent_presets": ["abc"]}, "invalid_percent_presets"),
        ({"percent_presets": 30}, "invalid_percent_presets"),
        ({"export_format": "pdf"}, "invalid_export_format"),
    ],
)
def test_invalid_settings_are_rejected(client, owner_headers, payload, error):
    resp = client.post("/settings/", json=payload, headers=owner_headers)
    assert resp.status_code == 400
    assert resp.get_json()["errors"] == [error]


def test_settings_require_owner(client):
    assert client.get("/settings/").status_code == 401


def test_partial_update_keeps_other_fields(app):
    save_settings(db.engine, "owner-1", {"percent_presets": [12], "export_format": "excel"})
    updated = save_settings(db.engine, "owner-1", {"export_format": "csv"})
    assert updated.percent_presets == [12]
    assert get_settings(db.engine, "owner-1").export_format == "csv"


def test_normalize_presets_rejects_booleans():
    with pytest.raises(SettingsError):
        normalize_presets([True])
    assert normalize_presets(["7.5", 50.0]) == [7.5, 50]
