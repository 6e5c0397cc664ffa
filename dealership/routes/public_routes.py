# -*- coding: utf-8 -*-
"""
Public routes blueprint - health check and locally stored media.
"""

from flask import Blueprint, send_from_directory, current_app, abort

from dealership.extensions import OBJECT_STORAGE_KEY
from dealership.services.object_storage import LocalObjectStorage
from dealership.utils.http_helpers import api_ok

# Create blueprint
bp = Blueprint('public', __name__)


@bp.route('/healthz')
def healthz():
    return api_ok({"status": "ok"})


@bp.route('/media/vehicle-images/<path:key>')
def vehicle_media(key):
    # Only the local backend is served from here; S3 objects have their own public URLs
    storage = current_app.extensions.get(OBJECT_STORAGE_KEY)
    if not isinstance(storage, LocalObjectStorage):
        abort(404)
    return send_from_directory(storage.root_dir, key)
