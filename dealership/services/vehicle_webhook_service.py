# -*- coding: utf-8 -*-
"""CRM vehicle webhook: validate, normalize, upsert, then reconcile images."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Sequence

from flask import current_app

from dealership.exceptions import ImageReconciliationError
from dealership.extensions import HTTP_SESSION_KEY, OBJECT_STORAGE_KEY, db
from dealership.models import Vehicle
from dealership.services.image_ingestion import ImageIngestionOrchestrator
from dealership.services.object_storage import ObjectStorageUploader
from dealership.services.remote_fetcher import RemoteFetcher
from dealership.services.url_resolver import ProviderUrlResolver
from dealership.services.vehicle_repository import (
    ACTION_CREATED,
    ACTION_SOLD,
    ACTION_UPDATED,
    VehicleRepository,
)
from dealership.utils.validation import ImageRequest, SoldVehiclePayload, parse_vehicle_webhook

logger = logging.getLogger(__name__)


@dataclass
class UpsertOutcome:
    vehicle_id: str
    action: str
    images_added: int = 0
    images_requested: int = 0

    @property
    def status_code(self) -> int:
        return 201 if self.action == ACTION_CREATED else 200

    def to_dict(self) -> dict:
        return {
            "success": True,
            "message": f"Vehicle {self.action} successfully via CRM ID",
            "vehicleId": self.vehicle_id,
            "action": self.action,
            "imagesAdded": self.images_added,
        }


class VehicleUpsertCoordinator:
    """
    One webhook invocation: validate -> normalize -> (sold short-circuit) ->
    full validation -> upsert by crmid -> image reconciliation.

    Validation and upsert errors propagate to the caller. Image reconciliation
    is best-effort: its failures are logged and reported as imagesAdded=0.
    Existing images are only deleted once at least one replacement is stored.
    """

    def __init__(self, repository: VehicleRepository, orchestrator: ImageIngestionOrchestrator) -> None:
        self.repository = repository
        self.orchestrator = orchestrator

    def handle(self, body: Any) -> UpsertOutcome:
        payload = parse_vehicle_webhook(body)

        if isinstance(payload, SoldVehiclePayload):
            vehicle, _ = self.repository.upsert_sold_flag(payload.crmid)
            logger.info("[WEBHOOK] crmid=%s marked as sold (vehicle=%s)", payload.crmid, vehicle.id)
            return UpsertOutcome(vehicle_id=vehicle.id, action=ACTION_SOLD)

        vehicle, created = self.repository.upsert_vehicle_record(payload.crmid, payload.fields, payload.raw_data)
        action = ACTION_CREATED if created else ACTION_UPDATED
        logger.info(
            "[WEBHOOK] crmid=%s %s vehicle=%s fields=%s",
            payload.crmid, action, vehicle.id, sorted(payload.fields),
        )

        outcome = UpsertOutcome(vehicle_id=vehicle.id, action=action, images_requested=len(payload.images))
        if payload.images:
            try:
                outcome.images_added = self.reconcile_images(vehicle, payload.images)
            except ImageReconciliationError:
                logger.exception("[WEBHOOK] Image reconciliation failed for vehicle=%s", vehicle.id)
            logger.info(
                "[WEBHOOK] crmid=%s images added=%d of %d requested",
                payload.crmid, outcome.images_added, outcome.images_requested,
            )
        return outcome

    def reconcile_images(self, vehicle: Vehicle, requests: Sequence[ImageRequest]) -> int:
        """Upload the new set first; swap rows only if something was uploaded."""
        vehicle_id, slug = vehicle.id, vehicle.slug
        try:
            records = self.orchestrator.ingest(vehicle_id, slug or "", requests)
            if not records:
                logger.warning(
                    "[WEBHOOK] No images uploaded for vehicle=%s (%d requested); keeping existing images",
                    vehicle_id, len(requests),
                )
                return 0
            removed = self.repository.delete_image_records(vehicle_id)
            self.repository.persist_image_records(vehicle_id, records)
        except Exception as e:
            self.repository.rollback()
            raise ImageReconciliationError(f"{e.__class__.__name__}: {e}") from e

        logger.info(
            "[WEBHOOK] vehicle=%s images replaced: removed=%d added=%d requested=%d",
            vehicle_id, removed, len(records), len(requests),
        )
        return len(records)


def build_image_orchestrator(app=None) -> ImageIngestionOrchestrator:
    app = app or current_app
    session = app.extensions[HTTP_SESSION_KEY]
    timeout = app.config["IMAGE_FETCH_TIMEOUT_SEC"]
    resolver = ProviderUrlResolver(session, timeout=timeout)
    return ImageIngestionOrchestrator(
        RemoteFetcher(session, resolver, timeout=timeout),
        ObjectStorageUploader(app.extensions[OBJECT_STORAGE_KEY]),
        max_images=app.config["MAX_IMAGES_PER_VEHICLE"],
        max_workers=app.config["INGEST_MAX_WORKERS"],
    )


def build_vehicle_coordinator(app=None) -> VehicleUpsertCoordinator:
    """Wire the coordinator from the collaborators the factory built for this process."""
    return VehicleUpsertCoordinator(VehicleRepository(db.session), build_image_orchestrator(app))
