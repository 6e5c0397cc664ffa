# -*- coding: utf-8 -*-
"""Vehicle and vehicle-image persistence on top of a SQLAlchemy session."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from dealership.exceptions import UpsertError, VehicleNotFoundError
from dealership.models import Vehicle, VehicleImage

logger = logging.getLogger(__name__)

ACTION_CREATED = "created"
ACTION_UPDATED = "updated"
ACTION_SOLD = "sold"


class VehicleRepository:
    def __init__(self, session) -> None:
        self.session = session

    # ---- reads ----

    def fetch_vehicle_record(self, crmid: str) -> Optional[Vehicle]:
        return self.session.query(Vehicle).filter_by(crmid=crmid).first()

    def get_by_id(self, vehicle_id: str) -> Optional[Vehicle]:
        return self.session.get(Vehicle, vehicle_id)

    def get_by_id_suffix(self, suffix: str) -> Optional[Vehicle]:
        return (
            self.session.query(Vehicle)
            .filter(Vehicle.id.like(f"%{suffix}"))
            .order_by(Vehicle.created_at.desc())
            .first()
        )

    # ---- vehicle writes ----

    def _apply(self, vehicle: Vehicle, fields: Dict[str, Any], raw_data: Optional[dict]) -> None:
        for column, value in fields.items():
            setattr(vehicle, column, value)
        if raw_data is not None:
            vehicle.raw_data = raw_data
        vehicle.updated_at = datetime.utcnow()

    def _write(self, crmid: str, fields: Dict[str, Any], raw_data: Optional[dict]) -> Tuple[Vehicle, bool]:
        vehicle = self.fetch_vehicle_record(crmid)
        created = vehicle is None
        if created:
            vehicle = Vehicle(crmid=crmid)
            self.session.add(vehicle)
        self._apply(vehicle, fields, raw_data)
        self.session.commit()
        return vehicle, created

    def upsert_vehicle_record(
        self,
        crmid: str,
        fields: Dict[str, Any],
        raw_data: Optional[dict] = None,
    ) -> Tuple[Vehicle, bool]:
        """
        Create or update the vehicle keyed by crmid. Returns (vehicle, created).

        A concurrent delivery of the same webhook can win the insert race; the
        unique crmid then raises IntegrityError and we update the row it created.
        """
        try:
            try:
                return self._write(crmid, fields, raw_data)
            except IntegrityError:
                self.session.rollback()
                logger.info("[DB] crmid=%s inserted concurrently; retrying as update", crmid)
                vehicle, _ = self._write(crmid, fields, raw_data)
                return vehicle, False
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.exception("[DB] Vehicle upsert failed crmid=%s", crmid)
            raise UpsertError(f"Failed to upsert vehicle: {e.__class__.__name__}") from e

    def upsert_sold_flag(self, crmid: str) -> Tuple[Vehicle, bool]:
        """Flip is_published off; touches nothing but the flag (and crmid on a new row)."""
        return self.upsert_vehicle_record(crmid, {"is_published": False})

    def mark_sold(self, crmid: str) -> Vehicle:
        """Mark an existing vehicle as sold. Unknown crmid raises VehicleNotFoundError."""
        vehicle = self.fetch_vehicle_record(crmid)
        if vehicle is None:
            raise VehicleNotFoundError(f"No vehicle found with crmid: {crmid}")
        try:
            self._apply(vehicle, {"is_published": False}, None)
            self.session.commit()
            return vehicle
        except SQLAlchemyError as e:
            self.session.rollback()
            raise UpsertError(f"Failed to mark vehicle as sold: {e.__class__.__name__}") from e

    def delete_vehicle(self, *, crmid: Optional[str] = None, vehicle_id: Optional[str] = None) -> str:
        """Hard delete by crmid or internal id; image rows go with it. Returns the deleted id."""
        vehicle = self.fetch_vehicle_record(crmid) if crmid else self.get_by_id(vehicle_id)
        if vehicle is None:
            key, value = ("crmid", crmid) if crmid else ("vehicleId", vehicle_id)
            raise VehicleNotFoundError(f"No vehicle found with {key}: {value}")
        try:
            deleted_id = vehicle.id
            self.session.delete(vehicle)
            self.session.commit()
            return deleted_id
        except SQLAlchemyError as e:
            self.session.rollback()
            raise UpsertError(f"Failed to delete vehicle: {e.__class__.__name__}") from e

    # ---- image writes ----

    def delete_image_records(self, vehicle_id: str) -> int:
        """Delete the vehicle's image rows. Flushed, not committed: persist_image_records commits."""
        deleted = (
            self.session.query(VehicleImage)
            .filter(VehicleImage.vehicle_id == vehicle_id)
            .delete(synchronize_session=False)
        )
        self.session.flush()
        vehicle = self.session.get(Vehicle, vehicle_id)
        if vehicle is not None:
            self.session.expire(vehicle, ["images"])
        return deleted

    def persist_image_records(self, vehicle_id: str, records: Sequence) -> List[VehicleImage]:
        """Insert the new image rows and point main_image_url at the lowest position, then commit."""
        rows = [
            VehicleImage(
                vehicle_id=vehicle_id,
                image_url=record.image_url,
                position=record.position,
                alt_text=record.alt_text,
            )
            for record in sorted(records, key=lambda r: r.position)
        ]
        self.session.add_all(rows)
        if rows:
            vehicle = self.session.get(Vehicle, vehicle_id)
            if vehicle is not None:
                # position 1 when present, else the first image that made it
                vehicle.main_image_url = rows[0].image_url
        self.session.commit()
        return rows

    def rollback(self) -> None:
        self.session.rollback()
