# -*- coding: utf-8 -*-
"""End-to-end tests for the CRM vehicle webhooks."""

import json
import logging
from unittest.mock import patch

import requests

from conftest import PNG_BYTES, image_response
from dealership.exceptions import UpsertError
from dealership.models import Vehicle, VehicleImage
from main import db

CDN = "https://crm-cdn.example.com/photos"


def vehicle_payload(crmid="CRM-1001", images=None, **data_overrides):
    data = {
        "slug": "toyota-corolla-2020",
        "title": "טויוטה קורולה 2020",
        "brand": "Toyota",
        "model": "Corolla",
        "year": 2020,
        "price": "₪95,000",
        "km": "45,000",
        "hand": "יד שנייה",
        "gear_type": "אוטומטי",
    }
    data.update(data_overrides)
    body = {"crmid": crmid, "data": data}
    if images is not None:
        body["images"] = images
    return body


def serve_images(http_session, *names, content_type="image/jpeg"):
    urls = []
    for name in names:
        url = f"{CDN}/{name}"
        http_session.add(url, image_response(url, content_type=content_type))
        urls.append(url)
    return urls


def images_of(app, vehicle_id):
    with app.app_context():
        rows = db.session.query(VehicleImage).filter_by(vehicle_id=vehicle_id).order_by(VehicleImage.position).all()
        return [(row.position, row.image_url, row.alt_text) for row in rows]


def get_vehicle(app, vehicle_id):
    with app.app_context():
        vehicle = db.session.get(Vehicle, vehicle_id)
        return vehicle.to_dict(include_images=False) if vehicle else None


# ============================================
# UPSERT
# ============================================

def test_create_then_update_is_idempotent(app, client):
    first = client.post("/api/webhooks/vehicles", json=vehicle_payload())
    assert first.status_code == 201
    body = first.get_json()
    assert body["success"] is True
    assert body["action"] == "created"
    assert body["imagesAdded"] == 0
    assert first.headers.get("X-Request-ID")

    second = client.post("/api/webhooks/vehicles", json=vehicle_payload(price=93000))
    assert second.status_code == 200
    assert second.get_json()["action"] == "updated"
    assert second.get_json()["vehicleId"] == body["vehicleId"]

    with app.app_context():
        assert db.session.query(Vehicle).filter_by(crmid="CRM-1001").count() == 1
    vehicle = get_vehicle(app, body["vehicleId"])
    assert vehicle["price"] == 93000
    assert vehicle["km"] == 45000
    assert vehicle["hand"] == 2
    assert vehicle["is_published"] is True


def test_raw_data_kept(app, client):
    resp = client.post("/api/webhooks/vehicles", json=vehicle_payload(dealer_note="מחיר סופי"))
    with app.app_context():
        vehicle = db.session.get(Vehicle, resp.get_json()["vehicleId"])
        assert vehicle.raw_data["dealer_note"] == "מחיר סופי"
        assert vehicle.raw_data["hand"] == "יד שנייה"


def test_sold_short_circuits_and_keeps_fields(app, client):
    created = client.post("/api/webhooks/vehicles", json=vehicle_payload()).get_json()

    resp = client.post("/api/webhooks/vehicles", json={"crmid": "CRM-1001", "data": {"is_published": False}})

    assert resp.status_code == 200
    assert resp.get_json()["action"] == "sold"
    assert resp.get_json()["vehicleId"] == created["vehicleId"]
    vehicle = get_vehicle(app, created["vehicleId"])
    assert vehicle["is_published"] is False
    assert vehicle["title"] == "טויוטה קורולה 2020"


def test_sold_for_unknown_crmid_creates_hidden_row(app, client, http_session):
    resp = client.post(
        "/api/webhooks/vehicles",
        json={"crmid": "CRM-404", "data": {"is_published": False}, "images": [{"image_url": f"{CDN}/x.jpg"}]},
    )
    assert resp.status_code == 200
    vehicle = get_vehicle(app, resp.get_json()["vehicleId"])
    assert vehicle["is_published"] is False
    assert vehicle["title"] is None
    assert http_session.calls == []


def test_zero_published_flag_is_a_full_upsert(app, client):
    resp = client.post("/api/webhooks/vehicles", json=vehicle_payload(is_published=0))

    assert resp.status_code == 201
    assert resp.get_json()["action"] == "created"
    vehicle = get_vehicle(app, resp.get_json()["vehicleId"])
    assert vehicle["is_published"] is False
    assert vehicle["title"] == "טויוטה קורולה 2020"


def test_string_false_without_fields_is_rejected(client):
    resp = client.post("/api/webhooks/vehicles", json={"crmid": "CRM-405", "data": {"is_published": "false"}})
    assert resp.status_code == 400
    assert "title" in resp.get_json()["details"]["missing"]


# ============================================
# VALIDATION / ERRORS
# ============================================

def test_missing_required_field_returns_400(client):
    payload = vehicle_payload()
    del payload["data"]["title"]
    resp = client.post("/api/webhooks/vehicles", json=payload)
    assert resp.status_code == 400
    body = resp.get_json()
    assert "title" in body["error"]
    assert body["details"] == {"missing": ["title"]}


def test_missing_crmid_returns_400(client):
    payload = vehicle_payload()
    del payload["crmid"]
    resp = client.post("/api/webhooks/vehicles", json=payload)
    assert resp.status_code == 400
    assert "crmid" in resp.get_json()["error"]


def test_invalid_json_returns_400(client):
    resp = client.post("/api/webhooks/vehicles", data="{not json", content_type="application/json")
    assert resp.status_code == 400


def test_infinite_year_returns_400(client):
    body = json.dumps(vehicle_payload(year=float("inf")))
    assert "Infinity" in body
    resp = client.post("/api/webhooks/vehicles", data=body, content_type="application/json")
    assert resp.status_code == 400
    assert "year" in resp.get_json()["error"]


def test_upsert_failure_returns_500(client):
    with patch(
        "dealership.services.vehicle_webhook_service.VehicleRepository.upsert_vehicle_record",
        side_effect=UpsertError("Failed to upsert vehicle: OperationalError"),
    ):
        resp = client.post("/api/webhooks/vehicles", json=vehicle_payload())
    assert resp.status_code == 500
    assert resp.get_json() == {"success": False, "error": "Failed to upsert vehicle: OperationalError"}


def test_oversized_body_returns_413(app, client):
    app.config["MAX_CONTENT_LENGTH"] = 256
    payload = vehicle_payload(short_description="א" * 500)
    resp = client.post("/api/webhooks/vehicles", json=payload)
    assert resp.status_code == 413


# ============================================
# IMAGES
# ============================================

def test_images_stored_and_main_image_set(app, client, http_session):
    urls = serve_images(http_session, "front.jpg", "side.jpg")
    images = [
        {"image_url": urls[0], "position": 1, "alt_text": "חזית"},
        {"image_url": urls[1], "position": 2},
    ]

    resp = client.post("/api/webhooks/vehicles", json=vehicle_payload(images=images))

    body = resp.get_json()
    assert body["imagesAdded"] == 2
    stored = images_of(app, body["vehicleId"])
    assert [pos for pos, _, _ in stored] == [1, 2]
    assert stored[0][2] == "חזית"
    assert all(url.startswith("/media/vehicle-images/vehicles/") for _, url, _ in stored)
    assert get_vehicle(app, body["vehicleId"])["main_image_url"] == stored[0][1]

    # the stored object is served back from the media route
    media = client.get(stored[0][1])
    assert media.status_code == 200
    assert media.data == PNG_BYTES


def test_partial_failure_reports_successful_count(app, client, http_session):
    good = serve_images(http_session, "1.jpg", "3.jpg")
    http_session.add(f"{CDN}/boom.jpg", requests.ConnectionError("reset by peer"))
    images = [
        {"image_url": good[0], "position": 1},
        {"image_url": f"{CDN}/missing.jpg", "position": 2},
        {"image_url": good[1], "position": 3},
        {"image_url": f"{CDN}/boom.jpg", "position": 4},
    ]

    resp = client.post("/api/webhooks/vehicles", json=vehicle_payload(images=images))

    assert resp.status_code == 201
    body = resp.get_json()
    assert body["imagesAdded"] == 2
    assert [pos for pos, _, _ in images_of(app, body["vehicleId"])] == [1, 3]


def test_image_outcome_logged_with_requested_count(client, http_session, caplog):
    good = serve_images(http_session, "only.jpg")
    images = [{"image_url": good[0], "position": 1}, {"image_url": f"{CDN}/missing.jpg", "position": 2}]

    with caplog.at_level(logging.INFO, logger="dealership.services.vehicle_webhook_service"):
        client.post("/api/webhooks/vehicles", json=vehicle_payload(crmid="CRM-77", images=images))

    assert "crmid=CRM-77 images added=1 of 2 requested" in caplog.text


def test_existing_images_kept_when_every_new_image_fails(app, client, http_session):
    urls = serve_images(http_session, "a.jpg", "b.jpg")
    first = client.post(
        "/api/webhooks/vehicles",
        json=vehicle_payload(images=[{"image_url": urls[0], "position": 1}, {"image_url": urls[1], "position": 2}]),
    ).get_json()
    before = images_of(app, first["vehicleId"])
    assert len(before) == 2

    second = client.post(
        "/api/webhooks/vehicles",
        json=vehicle_payload(images=[{"image_url": f"{CDN}/gone-{i}.jpg", "position": i} for i in (3, 4)]),
    )

    assert second.status_code == 200
    assert second.get_json()["imagesAdded"] == 0
    assert images_of(app, first["vehicleId"]) == before


def test_row_swap_failure_keeps_existing_images(app, client, http_session):
    urls = serve_images(http_session, "a.jpg", "b.jpg")
    first = client.post(
        "/api/webhooks/vehicles", json=vehicle_payload(images=[{"image_url": urls[0], "position": 1}])
    ).get_json()
    before = images_of(app, first["vehicleId"])
    cover = get_vehicle(app, first["vehicleId"])["main_image_url"]

    with patch(
        "dealership.services.vehicle_webhook_service.VehicleRepository.persist_image_records",
        side_effect=RuntimeError("database went away"),
    ):
        second = client.post(
            "/api/webhooks/vehicles",
            json=vehicle_payload(price=91000, images=[{"image_url": urls[1], "position": 2}]),
        )

    assert second.status_code == 200
    assert second.get_json()["success"] is True
    assert second.get_json()["imagesAdded"] == 0
    assert images_of(app, first["vehicleId"]) == before
    vehicle = get_vehicle(app, first["vehicleId"])
    assert vehicle["main_image_url"] == cover
    assert vehicle["price"] == 91000


def test_new_image_set_replaces_old_one(app, client, http_session):
    urls = serve_images(http_session, "a.jpg", "b.jpg", "c.jpg")
    first = client.post(
        "/api/webhooks/vehicles",
        json=vehicle_payload(images=[{"image_url": urls[0], "position": 1}, {"image_url": urls[1], "position": 2}]),
    ).get_json()

    second = client.post(
        "/api/webhooks/vehicles",
        json=vehicle_payload(images=[{"image_url": urls[2], "position": 5}]),
    ).get_json()

    assert second["imagesAdded"] == 1
    stored = images_of(app, first["vehicleId"])
    assert [pos for pos, _, _ in stored] == [5]
    assert get_vehicle(app, first["vehicleId"])["main_image_url"] == stored[0][1]


def test_webp_keeps_extension(app, client, http_session):
    urls = serve_images(http_session, "photo", content_type="image/webp")
    resp = client.post("/api/webhooks/vehicles", json=vehicle_payload(images=[{"image_url": urls[0], "position": 1}]))
    stored = images_of(app, resp.get_json()["vehicleId"])
    assert stored[0][1].endswith(".webp")


def test_inline_and_out_of_range_images_skipped(app, client, http_session):
    urls = serve_images(http_session, "ok.jpg", "eleven.jpg")
    images = [
        {"image_url": "data:image/png;base64,iVBORw0KGgo=", "position": 1},
        {"image_url": urls[0], "position": 2},
        {"image_url": urls[1], "position": 11},
    ]

    resp = client.post("/api/webhooks/vehicles", json=vehicle_payload(images=images))

    assert resp.get_json()["imagesAdded"] == 1
    assert http_session.called_urls() == [urls[0]]
    assert [pos for pos, _, _ in images_of(app, resp.get_json()["vehicleId"])] == [2]


def test_main_image_url_becomes_position_one(app, client, http_session):
    urls = serve_images(http_session, "main.jpg", "2.jpg")
    payload = vehicle_payload(images=[{"image_url": urls[1], "position": 2}], main_image_url=urls[0])

    resp = client.post("/api/webhooks/vehicles", json=payload)

    stored = images_of(app, resp.get_json()["vehicleId"])
    assert [pos for pos, _, _ in stored] == [1, 2]
    assert stored[0][2] == "טויוטה קורולה 2020"


# ============================================
# MARK-SOLD
# ============================================

def test_mark_sold_existing_vehicle(app, client):
    created = client.post("/api/webhooks/vehicles", json=vehicle_payload()).get_json()

    resp = client.post("/api/webhooks/vehicles/mark-sold", json={"crmid": "CRM-1001"})

    assert resp.status_code == 200
    assert resp.get_json() == {
        "success": True,
        "message": "Vehicle marked as sold",
        "crmid": "CRM-1001",
        "vehicleId": created["vehicleId"],
    }
    assert get_vehicle(app, created["vehicleId"])["is_published"] is False


def test_mark_sold_unknown_crmid_404(client):
    resp = client.delete("/api/webhooks/vehicles/mark-sold", json={"crmid": "nope"})
    assert resp.status_code == 404
    assert resp.get_json()["success"] is False


def test_mark_sold_requires_crmid(client):
    resp = client.post("/api/webhooks/vehicles/mark-sold", json={"vehicleId": "abc"})
    assert resp.status_code == 400


# ============================================
# DELETE
# ============================================

def test_delete_by_crmid_removes_images(app, client, http_session):
    urls = serve_images(http_session, "a.jpg")
    created = client.post(
        "/api/webhooks/vehicles", json=vehicle_payload(images=[{"image_url": urls[0], "position": 1}])
    ).get_json()

    resp = client.post("/api/webhooks/vehicles/delete", json={"crmid": "CRM-1001"})

    assert resp.status_code == 200
    assert resp.get_json()["crmid"] == "CRM-1001"
    assert get_vehicle(app, created["vehicleId"]) is None
    assert images_of(app, created["vehicleId"]) == []


def test_delete_by_vehicle_id(app, client):
    created = client.post("/api/webhooks/vehicles", json=vehicle_payload()).get_json()
    resp = client.delete("/api/webhooks/vehicles/delete", json={"vehicleId": created["vehicleId"]})
    assert resp.status_code == 200
    assert resp.get_json()["vehicleId"] == created["vehicleId"]


def test_delete_unknown_and_invalid(client):
    assert client.post("/api/webhooks/vehicles/delete", json={"crmid": "ghost"}).status_code == 404
    assert client.post("/api/webhooks/vehicles/delete", json={}).status_code == 400
