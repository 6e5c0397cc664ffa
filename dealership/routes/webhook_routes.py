# -*- coding: utf-8 -*-
"""CRM webhook blueprint: vehicle upsert, mark-as-sold and delete."""

from flask import Blueprint, request, current_app
from werkzeug.exceptions import HTTPException

from dealership.exceptions import UpsertError, ValidationError, VehicleNotFoundError
from dealership.extensions import db
from dealership.services.vehicle_repository import VehicleRepository
from dealership.services.vehicle_webhook_service import build_vehicle_coordinator
from dealership.utils.http_helpers import webhook_response, webhook_error, log_rejection, get_request_id
from dealership.utils.validation import parse_vehicle_reference

bp = Blueprint('webhooks', __name__, url_prefix='/api/webhooks')


def _read_json_body():
    body = request.get_json(force=True, silent=True)
    if body is None:
        raise ValidationError("Request body must be valid JSON", code="invalid_json")
    if isinstance(body, dict):
        current_app.logger.info(f"[WEBHOOK] request_id={get_request_id()} {request.path} keys={sorted(body.keys())}")
    return body


@bp.route('/vehicles', methods=['POST'])
def vehicles_webhook():
    """
    Create or update a vehicle by CRM id, and attach its images.

    Body: {"crmid": "...", "data": {...}, "images": [{"image_url", "position", "alt_text"}]}
    """
    try:
        body = _read_json_body()
        outcome = build_vehicle_coordinator().handle(body)
    except ValidationError as e:
        log_rejection("validation", e.message)
        return webhook_error(e.message, status=400, details=e.details)
    except UpsertError as e:
        current_app.logger.error(f"[WEBHOOK] request_id={get_request_id()} upsert failed: {e}")
        return webhook_error(str(e), status=500)
    except HTTPException:
        # 413 and friends go to the app-level error handlers
        raise
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception("[WEBHOOK] vehicles webhook failed")
        return webhook_error(str(e) or "Unknown error occurred", status=500)
    return webhook_response(outcome.to_dict(), status=outcome.status_code)


@bp.route('/vehicles/mark-sold', methods=['POST', 'DELETE'])
def mark_sold_webhook():
    """Soft delete: is_published=False hides the vehicle until the cleanup sweep removes it."""
    try:
        ref = parse_vehicle_reference(_read_json_body())
        crmid = ref.get("crmid")
        if not crmid:
            raise ValidationError("Missing required field: crmid", field="crmid", code="missing_field")
        vehicle = VehicleRepository(db.session).mark_sold(crmid)
    except ValidationError as e:
        log_rejection("validation", e.message)
        return webhook_error(e.message, status=400)
    except VehicleNotFoundError as e:
        log_rejection("not_found", "mark-sold for unknown crmid")
        return webhook_error(str(e), status=404)
    except UpsertError as e:
        return webhook_error(str(e), status=500)
    except HTTPException:
        raise
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception("[WEBHOOK] mark-sold failed")
        return webhook_error(str(e) or "Unknown error occurred", status=500)

    return webhook_response({
        "success": True,
        "message": "Vehicle marked as sold",
        "crmid": crmid,
        "vehicleId": vehicle.id,
    })


@bp.route('/vehicles/delete', methods=['POST', 'DELETE'])
def delete_webhook():
    """Hard delete by crmid (preferred) or internal vehicleId; images cascade."""
    try:
        ref = parse_vehicle_reference(_read_json_body())
        key = "crmid" if "crmid" in ref else "vehicleId"
        repo = VehicleRepository(db.session)
        if key == "crmid":
            repo.delete_vehicle(crmid=ref[key])
        else:
            repo.delete_vehicle(vehicle_id=ref[key])
    except ValidationError as e:
        log_rejection("validation", e.message)
        return webhook_error(e.message, status=400)
    except VehicleNotFoundError as e:
        log_rejection("not_found", "delete for unknown vehicle")
        return webhook_error(str(e), status=404)
    except UpsertError as e:
        return webhook_error(str(e), status=500)
    except HTTPException:
        raise
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception("[WEBHOOK] delete failed")
        return webhook_error(str(e) or "Unknown error occurred", status=500)

    current_app.logger.info(f"[WEBHOOK] request_id={get_request_id()} deleted vehicle {key}={ref[key]}")
    return webhook_response({"success": True, "message": "Vehicle deleted successfully", key: ref[key]})
