# -*- coding: utf-8 -*-
"""Vehicle read API (single vehicle by slug or id)."""

import re

from flask import Blueprint, current_app

from dealership.extensions import db
from dealership.models import ID_SUFFIX_LENGTH
from dealership.services.vehicle_repository import VehicleRepository
from dealership.utils.http_helpers import api_ok, api_error

bp = Blueprint('vehicles', __name__, url_prefix='/api/vehicles')

_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
_HEX_RE = re.compile(r"^[0-9a-f-]+$", re.IGNORECASE)


def extract_id_from_slug(slug_or_id: str) -> str:
    """
    'toyota-corolla-2020-426614174000' -> '426614174000'
    A full uuid is returned unchanged.
    """
    value = (slug_or_id or "").strip()
    if _UUID_RE.match(value):
        return value
    return value.rsplit("-", 1)[-1][-ID_SUFFIX_LENGTH:]


@bp.route('/<path:slug_or_id>', methods=['GET'])
def get_vehicle(slug_or_id):
    vehicle_ref = extract_id_from_slug(slug_or_id)
    if not vehicle_ref:
        return api_error("validation_error", "Slug or ID is required", status=400)
    if not _HEX_RE.match(vehicle_ref):
        return api_error("not_found", "Vehicle not found", status=404)

    repo = VehicleRepository(db.session)
    try:
        if _UUID_RE.match(vehicle_ref):
            vehicle = repo.get_by_id(vehicle_ref)
        else:
            vehicle = repo.get_by_id_suffix(vehicle_ref)
    except Exception:
        current_app.logger.exception("[DB] vehicle lookup failed")
        return api_error("server_error", "Failed to fetch vehicle", status=500)

    if vehicle is None:
        return api_error("not_found", "Vehicle not found", status=404)
    return api_ok({"vehicle": vehicle.to_dict()})
