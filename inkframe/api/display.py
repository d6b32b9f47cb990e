import os
import logging
from datetime import datetime
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from inkframe.db import get_db
from inkframe.models.device import Device, new_device, voltage_from_percent
from inkframe.models.device_model import DeviceModel
from inkframe.services import display, scheduler
from inkframe.services.geometry import resolve_image_settings
from inkframe.services.rasterizer import RasterizationError
from inkframe.services.render import RenderPipeline

AUTO_PROVISION = os.getenv("INKFRAME_AUTO_PROVISION", "1").strip().lower() in {"1", "true", "yes", "on"}
AUTO_PROVISION_MIRROR_ID = os.getenv("INKFRAME_AUTO_PROVISION_MIRROR_ID", "").strip()
DEFAULT_REFRESH_SEC = int(os.getenv("INKFRAME_DEFAULT_REFRESH_SEC", "900"))
IMAGE_URL_TIMEOUT = os.getenv("INKFRAME_IMAGE_URL_TIMEOUT", "").strip()
NOT_REGISTERED = "MAC Address not registered or invalid access token"

router = APIRouter(prefix="/api", tags=["display"])
logger = logging.getLogger(__name__)


def get_render_pipeline() -> RenderPipeline:
    return RenderPipeline()


def _request_origin(request: Request) -> str:
    forwarded_proto = (request.headers.get("X-Forwarded-Proto") or "").strip()
    forwarded_host = (request.headers.get("X-Forwarded-Host") or "").strip()
    if forwarded_host:
        proto = forwarded_proto or request.url.scheme
        return f"{proto}://{forwarded_host}".rstrip("/")
    return str(request.base_url).rstrip("/")


def storage_url(request: Request, relative_path: str) -> str:
    return f"{_request_origin(request)}/storage/{relative_path}"


def _header_int(request: Request, name: str) -> int | None:
    raw = (request.headers.get(name) or "").strip()
    try:
        return int(float(raw)) if raw else None
    except ValueError:
        return None


def _header_float(request: Request, name: str) -> float | None:
    raw = (request.headers.get(name) or "").strip()
    try:
        return float(raw) if raw else None
    except ValueError:
        return None


def _mirror_target() -> int | None:
    return int(AUTO_PROVISION_MIRROR_ID) if AUTO_PROVISION_MIRROR_ID.isdigit() else None


def _find_device(db: Session, mac_address: str, api_key: str) -> Device | None:
    if not api_key:
        return None
    query = db.query(Device).filter(Device.api_key == api_key)
    if mac_address:
        query = query.filter(Device.mac_address == mac_address)
    return query.first()


def _provision(db: Session, mac_address: str, api_key: str | None, model_name: str | None = None) -> Device:
    model_id = None
    if model_name:
        model = db.query(DeviceModel).filter(DeviceModel.name == model_name).first()
        model_id = model.id if model else None
    device = new_device(
        mac_address,
        api_key=api_key or None,
        device_model_id=model_id,
        mirror_device_id=_mirror_target(),
        default_refresh_interval=DEFAULT_REFRESH_SEC,
    )
    db.add(device)
    db.commit()
    db.refresh(device)
    logger.info("Auto-provisioned device %s (%s)", device.id, device.mac_address)
    return device


def _record_telemetry(device: Device, request: Request, now: datetime) -> None:
    rssi = _header_int(request, "rssi")
    if rssi is not None:
        device.last_rssi_level = rssi
    voltage = _header_float(request, "battery_voltage")
    percent = _header_float(request, "battery-percent")
    if percent is not None:
        voltage = voltage_from_percent(percent)
    if voltage is not None:
        device.last_battery_voltage = voltage
    firmware = (request.headers.get("fw-version") or "").strip()
    if firmware:
        device.last_firmware_version = firmware
    device.last_refreshed_at = now


def _resolve_or_keep(db: Session, device: Device, pipeline: RenderPipeline, now: datetime) -> display.DisplayResolution:
    try:
        return display.resolve_for_device(db, device, pipeline, now)
    except RasterizationError as exc:
        logger.error("Rasterization failed for device %s: %s", device.id, exc)
        db.rollback()
        return display.current_screen(db, device, pipeline)


@router.get("/display")
def get_display(
    request: Request,
    db: Session = Depends(get_db),
    pipeline: RenderPipeline = Depends(get_render_pipeline),
):
    mac_address = (request.headers.get("id") or "").strip().upper()
    api_key = (request.headers.get("access-token") or "").strip()
    device = _find_device(db, mac_address, api_key)
    if device is None:
        if not AUTO_PROVISION or not mac_address or db.query(Device).filter(Device.mac_address == mac_address).first():
            return JSONResponse({"message": NOT_REGISTERED}, status_code=404)
        device = _provision(db, mac_address, api_key)

    now = scheduler.utcnow()
    _record_telemetry(device, request, now)
    db.commit()

    resolution = _resolve_or_keep(db, device, pipeline, now)
    response = {
        "status": 0,
        "image_url": storage_url(request, resolution.image_path),
        "filename": resolution.filename,
        "refresh_rate": resolution.refresh_rate or device.default_refresh_interval or DEFAULT_REFRESH_SEC,
        "reset_firmware": False,
        "update_firmware": bool(device.update_firmware),
        "firmware_url": device.firmware_url,
        "special_function": device.special_function or "sleep",
        "maximum_compatibility": bool(device.maximum_compatibility),
    }
    if IMAGE_URL_TIMEOUT:
        response["image_url_timeout"] = int(IMAGE_URL_TIMEOUT)
    if device.update_firmware:
        device.update_firmware = False
        db.commit()
    return response


@router.get("/current_screen")
def get_current_screen(
    request: Request,
    db: Session = Depends(get_db),
    pipeline: RenderPipeline = Depends(get_render_pipeline),
):
    api_key = (request.headers.get("access-token") or "").strip()
    device = db.query(Device).filter(Device.api_key == api_key).first() if api_key else None
    if device is None:
        return JSONResponse({"status": 404, "message": "Device not found"}, status_code=404)
    resolution = display.current_screen(db, device, pipeline)
    return {
        "status": 200,
        "image_url": storage_url(request, resolution.image_path),
        "filename": resolution.filename,
        "refresh_rate": device.default_refresh_interval or DEFAULT_REFRESH_SEC,
    }


@router.get("/setup")
def setup_device(
    request: Request,
    db: Session = Depends(get_db),
    pipeline: RenderPipeline = Depends(get_render_pipeline),
):
    mac_address = (request.headers.get("id") or "").strip().upper()
    if not mac_address:
        return JSONResponse({"status": 404, "message": "MAC Address not registered"}, status_code=404)
    device = db.query(Device).filter(Device.mac_address == mac_address).first()
    if device is None:
        if not AUTO_PROVISION:
            return JSONResponse({"status": 404, "message": "MAC Address not registered"}, status_code=404)
        device = _provision(db, mac_address, None, (request.headers.get("model-id") or "").strip() or None)

    settings = resolve_image_settings(db, device)
    path = display.default_screen(pipeline, "setup", settings, device.friendly_id)
    return {
        "status": 200,
        "api_key": device.api_key,
        "friendly_id": device.friendly_id,
        "image_url": storage_url(request, path),
        "message": "Welcome to inkframe",
    }
