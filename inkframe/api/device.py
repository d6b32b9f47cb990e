from datetime import datetime, time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from inkframe.db import get_db
from inkframe.models.device import Device, new_device
from inkframe.models.device_model import DeviceModel
from inkframe.models.playlist import Playlist, PlaylistItem
from inkframe.schemas.device import DeviceModelOut, DeviceOut
from inkframe.services.geometry import ImageFormat

router = APIRouter(prefix="/devices", tags=["devices"])
models_router = APIRouter(prefix="/device-models", tags=["devices"])

ALLOWED_ROTATIONS = {0, 90, 180, 270}


def _parse_hm(value: str, field_name: str) -> time:
    try:
        return time.fromisoformat(value.strip())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"{field_name} must be HH:MM or HH:MM:SS") from exc


def _validate_timezone(value: str) -> str:
    cleaned = value.strip()
    try:
        ZoneInfo(cleaned)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=f"Unknown timezone: {cleaned}") from exc
    return cleaned


def _get_device(db: Session, device_id: int) -> Device:
    device = db.get(Device, device_id)
    if not device:
        raise HTTPException(status_code=404, detail="Device not found")
    return device


@router.post("", response_model=DeviceOut)
def create_device(
    mac_address: str,
    name: str | None = None,
    api_key: str | None = None,
    device_model_id: int | None = None,
    db: Session = Depends(get_db),
):
    cleaned = mac_address.strip().upper()
    if not cleaned:
        raise HTTPException(status_code=400, detail="mac_address is required")
    if db.query(Device).filter(Device.mac_address == cleaned).first():
        raise HTTPException(status_code=400, detail="Device with this MAC address already exists")
    if device_model_id is not None and not db.get(DeviceModel, device_model_id):
        raise HTTPException(status_code=400, detail="Unknown device_model_id")
    device = new_device(cleaned, name=(name or "").strip() or None, api_key=api_key, device_model_id=device_model_id)
    db.add(device)
    db.commit()
    db.refresh(device)
    return device


@router.get("", response_model=list[DeviceOut])
def list_devices(db: Session = Depends(get_db)):
    return db.query(Device).order_by(Device.id.asc()).all()


@router.get("/{device_id}", response_model=DeviceOut)
def get_device(device_id: int, db: Session = Depends(get_db)):
    return _get_device(db, device_id)


@router.put("/{device_id}", response_model=DeviceOut)
def update_device(
    device_id: int,
    name: str | None = None,
    width: int | None = None,
    height: int | None = None,
    rotate: int | None = None,
    device_model_id: int | None = None,
    clear_device_model: bool = False,
    image_format: str | None = None,
    timezone: str | None = None,
    default_refresh_interval: int | None = None,
    sleep_mode_enabled: bool | None = None,
    sleep_mode_from: str | None = None,
    sleep_mode_to: str | None = None,
    pause_until: datetime | None = None,
    clear_pause: bool = False,
    special_function: str | None = None,
    mirror_device_id: int | None = None,
    clear_mirror: bool = False,
    update_firmware: bool | None = None,
    firmware_url: str | None = None,
    db: Session = Depends(get_db),
):
    device = _get_device(db, device_id)
    if name is not None:
        cleaned = name.strip()
        if not cleaned:
            raise HTTPException(status_code=400, detail="Device name cannot be empty")
        device.name = cleaned
    if width is not None or height is not None:
        if (width is not None and width <= 0) or (height is not None and height <= 0):
            raise HTTPException(status_code=400, detail="width and height must be positive")
        device.width = width if width is not None else device.width
        device.height = height if height is not None else device.height
    if rotate is not None:
        if rotate not in ALLOWED_ROTATIONS:
            raise HTTPException(status_code=400, detail="rotate must be 0, 90, 180 or 270")
        device.rotate = rotate
    if clear_device_model:
        device.device_model_id = None
    elif device_model_id is not None:
        if not db.get(DeviceModel, device_model_id):
            raise HTTPException(status_code=400, detail="Unknown device_model_id")
        device.device_model_id = device_model_id
    if image_format is not None:
        try:
            device.image_format = ImageFormat(image_format.strip().lower()).value
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=f"Unknown image_format: {image_format}") from exc
    if timezone is not None:
        device.timezone = _validate_timezone(timezone) if timezone.strip() else None
    if default_refresh_interval is not None:
        if default_refresh_interval <= 0:
            raise HTTPException(status_code=400, detail="default_refresh_interval must be positive")
        device.default_refresh_interval = default_refresh_interval
    if sleep_mode_enabled is not None:
        device.sleep_mode_enabled = sleep_mode_enabled
    if sleep_mode_from is not None:
        device.sleep_mode_from = _parse_hm(sleep_mode_from, "sleep_mode_from")
    if sleep_mode_to is not None:
        device.sleep_mode_to = _parse_hm(sleep_mode_to, "sleep_mode_to")
    if device.sleep_mode_enabled and (device.sleep_mode_from is None or device.sleep_mode_to is None):
        raise HTTPException(status_code=400, detail="Sleep mode requires sleep_mode_from and sleep_mode_to")
    if clear_pause:
        device.pause_until = None
    elif pause_until is not None:
        if pause_until.tzinfo is not None:
            pause_until = pause_until.astimezone(ZoneInfo("UTC")).replace(tzinfo=None)
        device.pause_until = pause_until
    if special_function is not None:
        device.special_function = special_function.strip() or None
    if clear_mirror:
        device.mirror_device_id = None
    elif mirror_device_id is not None:
        if mirror_device_id == device.id:
            raise HTTPException(status_code=400, detail="A device cannot mirror itself")
        if not db.get(Device, mirror_device_id):
            raise HTTPException(status_code=400, detail="Unknown mirror_device_id")
        device.mirror_device_id = mirror_device_id
    if update_firmware is not None:
        device.update_firmware = update_firmware
    if firmware_url is not None:
        device.firmware_url = firmware_url.strip() or None
    db.commit()
    db.refresh(device)
    return device


@router.delete("/{device_id}")
def delete_device(device_id: int, db: Session = Depends(get_db)):
    device = _get_device(db, device_id)
    playlist_ids = [row[0] for row in db.query(Playlist.id).filter(Playlist.device_id == device.id).all()]
    if playlist_ids:
        db.query(PlaylistItem).filter(PlaylistItem.playlist_id.in_(playlist_ids)).delete(synchronize_session=False)
        db.query(Playlist).filter(Playlist.id.in_(playlist_ids)).delete(synchronize_session=False)
    db.query(Device).filter(Device.mirror_device_id == device.id).update(
        {"mirror_device_id": None},
        synchronize_session=False,
    )
    db.delete(device)
    db.commit()
    return {"ok": True}


@models_router.get("", response_model=list[DeviceModelOut])
def list_device_models(db: Session = Depends(get_db)):
    return db.query(DeviceModel).order_by(DeviceModel.name.asc()).all()
