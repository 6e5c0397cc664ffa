import pytest

from dealership.exceptions import VehicleNotFoundError
from dealership.services.image_ingestion import PendingImageRecord
from dealership.services.vehicle_repository import VehicleRepository
from main import Vehicle, VehicleImage, db

FIELDS = {"slug": "skoda-octavia-2019", "title": "סקודה אוקטביה", "brand": "Skoda", "model": "Octavia", "year": 2019, "price": 72000}


@pytest.fixture
def repo(app):
    with app.app_context():
        yield VehicleRepository(db.session)


def test_upsert_creates_then_updates(repo):
    vehicle, created = repo.upsert_vehicle_record("CRM-7", FIELDS, {"title": "סקודה אוקטביה"})
    assert created
    again, created_again = repo.upsert_vehicle_record("CRM-7", {**FIELDS, "price": 70000})
    assert not created_again
    assert again.id == vehicle.id
    assert again.price == 70000
    # raw_data untouched when none is passed
    assert again.raw_data == {"title": "סקודה אוקטביה"}


def test_sold_flag_only_touches_flag(repo):
    vehicle, _ = repo.upsert_vehicle_record("CRM-8", FIELDS)
    sold, created = repo.upsert_sold_flag("CRM-8")
    assert not created
    assert sold.is_published is False
    assert sold.title == FIELDS["title"]


def test_mark_sold_and_delete_unknown_raise(repo):
    with pytest.raises(VehicleNotFoundError):
        repo.mark_sold("missing")
    with pytest.raises(VehicleNotFoundError):
        repo.delete_vehicle(vehicle_id="missing")


def test_image_swap(repo):
    vehicle, _ = repo.upsert_vehicle_record("CRM-9", FIELDS)
    repo.persist_image_records(vehicle.id, [
        PendingImageRecord("/media/a.jpg", 2),
        PendingImageRecord("/media/b.jpg", 1, "חזית"),
    ])
    assert [img.position for img in vehicle.images] == [1, 2]
    assert vehicle.main_image_url == "/media/b.jpg"

    removed = repo.delete_image_records(vehicle.id)
    repo.persist_image_records(vehicle.id, [PendingImageRecord("/media/c.jpg", 1)])

    assert removed == 2
    assert [img.image_url for img in vehicle.images] == ["/media/c.jpg"]
    assert db.session.query(VehicleImage).count() == 1


def test_lookup_by_id_suffix(repo):
    vehicle, _ = repo.upsert_vehicle_record("CRM-10", FIELDS)
    assert repo.get_by_id_suffix(vehicle.id_suffix).id == vehicle.id
    assert repo.get_by_id_suffix("ffffffffffff") is None


def test_delete_cascades_images(repo):
    vehicle, _ = repo.upsert_vehicle_record("CRM-11", FIELDS)
    repo.persist_image_records(vehicle.id, [PendingImageRecord("/media/a.jpg", 1)])
    deleted_id = repo.delete_vehicle(crmid="CRM-11")
    assert deleted_id == vehicle.id
    assert db.session.query(Vehicle).count() == 0
    assert db.session.query(VehicleImage).count() == 0
