import secrets
import string
from datetime import datetime
from sqlalchemy import Column, String, Integer, Float, Boolean, DateTime, Time, ForeignKey
from inkframe.db import Base

BATTERY_MIN_VOLTAGE = 3.0
BATTERY_MAX_VOLTAGE = 4.2


class Device(Base):
    __tablename__ = "device"
    id = Column(Integer, primary_key=True, autoincrement=True)
    mac_address = Column(String, nullable=False, unique=True)
    api_key = Column(String, nullable=False)
    friendly_id = Column(String, nullable=False)
    name = Column(String, nullable=False)
    device_model_id = Column(Integer, ForeignKey("device_model.id"), nullable=True)
    width = Column(Integer, default=800)
    height = Column(Integer, default=480)
    rotate = Column(Integer, default=0)
    image_format = Column(String, default="auto")
    timezone = Column(String, nullable=True)
    last_firmware_version = Column(String, nullable=True)
    last_rssi_level = Column(Integer, nullable=True)
    last_battery_voltage = Column(Float, nullable=True)
    last_refreshed_at = Column(DateTime, nullable=True)
    default_refresh_interval = Column(Integer, default=900)
    sleep_mode_enabled = Column(Boolean, default=False)
    sleep_mode_from = Column(Time, nullable=True)
    sleep_mode_to = Column(Time, nullable=True)
    pause_until = Column(DateTime, nullable=True)
    special_function = Column(String, nullable=True)
    maximum_compatibility = Column(Boolean, default=False)
    update_firmware = Column(Boolean, default=False)
    firmware_url = Column(String, nullable=True)
    mirror_device_id = Column(Integer, ForeignKey("device.id"), nullable=True)
    current_screen_image = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    @property
    def battery_percent(self) -> int | None:
        if self.last_battery_voltage is None:
            return None
        span = BATTERY_MAX_VOLTAGE - BATTERY_MIN_VOLTAGE
        percent = (self.last_battery_voltage - BATTERY_MIN_VOLTAGE) / span * 100
        return int(round(min(max(percent, 0), 100)))

    @property
    def wifi_strength(self) -> int:
        rssi = self.last_rssi_level
        if rssi is None or rssi >= 0:
            return 0
        if rssi <= -80:
            return 1
        if rssi <= -60:
            return 2
        return 3


def voltage_from_percent(percent: float) -> float:
    percent = min(max(percent, 0), 100)
    span = BATTERY_MAX_VOLTAGE - BATTERY_MIN_VOLTAGE
    return round(BATTERY_MIN_VOLTAGE + span * percent / 100, 2)


def _friendly_id() -> str:
    alphabet = string.ascii_uppercase + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(6))


def new_device(
    mac_address: str,
    *,
    name: str | None = None,
    api_key: str | None = None,
    device_model_id: int | None = None,
    mirror_device_id: int | None = None,
    default_refresh_interval: int = 900,
) -> Device:
    """Build an unsaved device with generated credentials."""
    friendly_id = _friendly_id()
    return Device(
        mac_address=mac_address.strip().upper(),
        api_key=api_key or secrets.token_urlsafe(16),
        friendly_id=friendly_id,
        name=name or f"{friendly_id} (auto)",
        device_model_id=device_model_id,
        mirror_device_id=mirror_device_id,
        default_refresh_interval=default_refresh_interval,
        width=800,
        height=480,
        rotate=0,
        image_format="auto",
    )
