from pydantic import BaseModel
from datetime import datetime, time


class DeviceOut(BaseModel):
    id: int
    mac_address: str
    friendly_id: str
    name: str
    device_model_id: int | None = None
    width: int | None = None
    height: int | None = None
    rotate: int | None = None
    image_format: str | None = None
    timezone: str | None = None
    last_firmware_version: str | None = None
    last_rssi_level: int | None = None
    last_battery_voltage: float | None = None
    last_refreshed_at: datetime | None = None
    battery_percent: int | None = None
    wifi_strength: int
    default_refresh_interval: int | None = None
    sleep_mode_enabled: bool | None = None
    sleep_mode_from: time | None = None
    sleep_mode_to: time | None = None
    pause_until: datetime | None = None
    special_function: str | None = None
    update_firmware: bool | None = None
    firmware_url: str | None = None
    mirror_device_id: int | None = None
    current_screen_image: str | None = None

    class Config:
        from_attributes = True


class DeviceModelOut(BaseModel):
    id: int
    name: str
    label: str
    description: str | None = None
    width: int
    height: int
    colors: int
    bit_depth: int
    scale_factor: float
    rotation: int
    mime_type: str
    offset_x: int
    offset_y: int
    palette: list[str] | None = None

    class Config:
        from_attributes = True
