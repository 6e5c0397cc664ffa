"""Validation of incoming CRM webhook payloads.

The vehicle webhook body is parsed once, at the boundary, into one of two
payload types:

* :class:`SoldVehiclePayload` -- ``data.is_published`` is the JSON literal ``false``;
  nothing but the CRM id is required.
* :class:`VehicleUpsertPayload` -- every other body; the vehicle fields are
  normalized, type-checked and mapped onto column names, and the image
  list is turned into :class:`ImageRequest` objects.

Anything that does not fit raises :class:`~dealership.exceptions.ValidationError`
before a single row is touched.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from dealership.exceptions import ValidationError
from dealership.utils.normalization import (
    normalize_condition,
    normalize_hand,
    parse_bool,
    parse_categories,
    parse_int,
)

REQUIRED_VEHICLE_FIELDS = ("slug", "title", "brand", "model", "year", "price")

# column -> accepted keys in the incoming ``data`` object, first match wins
_FIELD_ALIASES = {
    "slug": ("slug",),
    "title": ("title",),
    "brand": ("brand",),
    "model": ("model",),
    "year": ("year",),
    "price": ("price",),
    "km": ("km", "mileage"),
    "gear_type": ("gear_type", "transmission"),
    "fuel_type": ("fuel_type",),
    "categories": ("categories",),
    "hand": ("hand",),
    "condition": ("condition",),
    "short_description": ("short_description", "description"),
    "external_id": ("external_id",),
    "is_published": ("is_published",),
}

_INT_FIELDS = {"year", "price", "km"}
_MAIN_IMAGE_KEYS = ("main_image_url", "main_image")


@dataclass(frozen=True)
class ImageRequest:
    """One requested image: external url, requested position, optional alt text."""

    url: str
    position: Optional[int]
    alt_text: Optional[str] = None


@dataclass
class SoldVehiclePayload:
    crmid: str
    raw_data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class VehicleUpsertPayload:
    crmid: str
    fields: Dict[str, Any]
    raw_data: Dict[str, Any]
    images: List[ImageRequest] = field(default_factory=list)


VehicleWebhookPayload = Union[SoldVehiclePayload, VehicleUpsertPayload]


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _require_crmid(body: Mapping[str, Any]) -> str:
    crmid = body.get("crmid")
    if isinstance(crmid, bool) or not isinstance(crmid, (str, int)) or _is_blank(crmid):
        raise ValidationError("Missing required field: crmid", field="crmid", code="missing_field")
    return str(crmid).strip()


def _require_data(body: Mapping[str, Any]) -> Dict[str, Any]:
    data = body.get("data")
    if data is None:
        raise ValidationError("Missing required field: data", field="data", code="missing_field")
    if not isinstance(data, dict):
        raise ValidationError("Field 'data' must be an object", field="data", code="invalid_type")
    return data


def normalize_vehicle_data(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Apply the condition and hand transforms; every other key is copied as-is."""
    normalized = dict(data)
    if "condition" in normalized:
        normalized["condition"] = normalize_condition(normalized["condition"])
    if "hand" in normalized:
        normalized["hand"] = normalize_hand(normalized["hand"])
    return normalized


def is_sold_payload(data: Mapping[str, Any]) -> bool:
    # only a literal JSON false; 0 / "false" go through full validation
    return "is_published" in data and data["is_published"] is False


def missing_required_fields(data: Mapping[str, Any]) -> List[str]:
    return [name for name in REQUIRED_VEHICLE_FIELDS if _is_blank(data.get(name))]


def map_vehicle_fields(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Map the (normalized) data object onto Vehicle column values."""
    fields: Dict[str, Any] = {}
    for column, keys in _FIELD_ALIASES.items():
        key = next((k for k in keys if k in data), None)
        if key is None:
            continue
        value = data[key]
        if column in _INT_FIELDS:
            try:
                value = parse_int(value)
            except ValueError:
                raise ValidationError(
                    f"Field '{key}' must be a number",
                    field=key,
                    code="invalid_type",
                ) from None
        elif column == "categories":
            value = parse_categories(value)
        elif column == "is_published":
            value = parse_bool(value)
            if value is None:
                continue
        elif isinstance(value, str):
            value = value.strip()
        elif value is not None and column != "hand":
            value = str(value)
        fields[column] = value
    return fields


def _coerce_position(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def parse_image_requests(raw_images: Any) -> List[ImageRequest]:
    """Turn the ``images`` array into ImageRequest objects.

    Structural problems (not a list, an entry that is not an object) reject the
    whole payload. Per-entry problems -- a blank url, a position that is not an
    integer -- are kept and left for the ingestion step to reject one by one.
    """
    if raw_images is None:
        return []
    if not isinstance(raw_images, list):
        raise ValidationError("Field 'images' must be an array", field="images", code="invalid_type")

    requests_: List[ImageRequest] = []
    for index, entry in enumerate(raw_images):
        if not isinstance(entry, dict):
            raise ValidationError(
                f"images[{index}] must be an object",
                field="images",
                code="invalid_type",
            )
        url = entry.get("image_url")
        url = url.strip() if isinstance(url, str) else ""
        position = _coerce_position(entry["position"]) if "position" in entry else index + 1
        alt_text = entry.get("alt_text")
        alt_text = str(alt_text).strip() if not _is_blank(alt_text) else None
        requests_.append(ImageRequest(url=url, position=position, alt_text=alt_text))
    return requests_


def _main_image_url(body: Mapping[str, Any], data: Mapping[str, Any]) -> Optional[str]:
    for source in (body, data):
        for key in _MAIN_IMAGE_KEYS:
            value = source.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None


def build_image_requests(body: Mapping[str, Any], data: Mapping[str, Any]) -> List[ImageRequest]:
    """Explicit images plus a position-1 entry for the main image, unless position 1 is taken."""
    images = parse_image_requests(body.get("images"))
    main_url = _main_image_url(body, data)
    if main_url and not any(img.position == 1 for img in images):
        alt = data.get("title") if isinstance(data.get("title"), str) else None
        images.insert(0, ImageRequest(url=main_url, position=1, alt_text=alt))
    return images


def parse_vehicle_webhook(body: Any) -> VehicleWebhookPayload:
    """Validate and normalize a vehicle webhook body.

    Raises
    ------
    ValidationError
        If the body is not an object, lacks ``crmid`` / ``data``, or (for
        anything but a sold notification) lacks one of
        :data:`REQUIRED_VEHICLE_FIELDS`.
    """
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object", code="invalid_json")

    data = _require_data(body)
    crmid = _require_crmid(body)
    normalized = normalize_vehicle_data(data)

    if is_sold_payload(normalized):
        return SoldVehiclePayload(crmid=crmid, raw_data=dict(data))

    missing = missing_required_fields(normalized)
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            code="missing_field",
            details={"missing": missing},
        )

    return VehicleUpsertPayload(
        crmid=crmid,
        fields=map_vehicle_fields(normalized),
        raw_data=dict(data),
        images=build_image_requests(body, data),
    )


def parse_vehicle_reference(body: Any) -> Dict[str, str]:
    """Used by mark-sold / delete: requires ``crmid`` or ``vehicleId``."""
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object", code="invalid_json")
    ref = {}
    for key in ("crmid", "vehicleId"):
        value = body.get(key)
        if isinstance(value, (str, int)) and not isinstance(value, bool) and not _is_blank(value):
            ref[key] = str(value).strip()
    if not ref:
        raise ValidationError(
            'Missing required field: either "crmid" or "vehicleId" must be provided',
            code="missing_field",
        )
    return ref
