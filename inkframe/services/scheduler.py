import os
import logging
from datetime import datetime, timedelta, timezone
from sqlalchemy.orm import Session
from inkframe.models.device import Device
from inkframe.models.playlist import Playlist, PlaylistItem
from inkframe.services.activation import DEFAULT_TIMEZONE, is_active_at, local_now, time_in_window

MAX_SLEEP_REFRESH_SEC = int(os.getenv("INKFRAME_MAX_SLEEP_REFRESH_SEC", str(6 * 3600)))

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc_naive(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def device_timezone(device: Device) -> str:
    return (device.timezone or "").strip() or DEFAULT_TIMEZONE


def playlist_is_active_now(playlist: Playlist, now: datetime, tz: str) -> bool:
    if not playlist.is_active:
        return False
    return is_active_at(now, tz, playlist.weekdays, playlist.active_from, playlist.active_until)


def resolve_active_playlist(db: Session, device: Device, now: datetime) -> Playlist | None:
    tz = device_timezone(device)
    playlists = (
        db.query(Playlist)
        .filter(Playlist.device_id == device.id)
        .order_by(Playlist.id.asc())
        .all()
    )
    for playlist in playlists:
        if playlist_is_active_now(playlist, now, tz):
            return playlist
    return None


def _rotation_key(item: PlaylistItem) -> tuple:
    never_shown = item.last_displayed_at is None
    return (
        0 if never_shown else 1,
        item.last_displayed_at or datetime.min,
        item.order,
        item.id,
    )


def resolve_next_item(db: Session, playlist: Playlist, now: datetime) -> PlaylistItem | None:
    """
    Pick the item shown least recently and advance its cursor.

    Items never displayed go first; ties fall back to `order`. The caller
    commits the session.
    """
    items = (
        db.query(PlaylistItem)
        .filter(PlaylistItem.playlist_id == playlist.id, PlaylistItem.is_active.is_(True))
        .order_by(PlaylistItem.order.asc(), PlaylistItem.id.asc())
        .all()
    )
    if not items:
        return None
    item = min(items, key=_rotation_key)
    stamp = as_utc_naive(now)
    if item.last_displayed_at is None or stamp > item.last_displayed_at:
        item.last_displayed_at = stamp
    logger.debug("Playlist %s advanced to item %s", playlist.id, item.id)
    return item


def is_paused(device: Device, now: datetime) -> bool:
    return device.pause_until is not None and device.pause_until > as_utc_naive(now)


def pause_remaining_seconds(device: Device, now: datetime) -> int:
    remaining = (device.pause_until - as_utc_naive(now)).total_seconds()
    return min(max(int(remaining), 1), MAX_SLEEP_REFRESH_SEC)


def is_sleeping(device: Device, now: datetime) -> bool:
    if not device.sleep_mode_enabled or device.sleep_mode_from is None or device.sleep_mode_to is None:
        return False
    local = local_now(now, device_timezone(device))
    return time_in_window(local.time(), device.sleep_mode_from, device.sleep_mode_to)


def sleep_remaining_seconds(device: Device, now: datetime) -> int:
    local = local_now(now, device_timezone(device))
    wake = datetime.combine(local.date(), device.sleep_mode_to, tzinfo=local.tzinfo)
    if wake <= local:
        wake += timedelta(days=1)
    remaining = (wake.astimezone(timezone.utc) - local.astimezone(timezone.utc)).total_seconds()
    return min(max(int(remaining), 1), MAX_SLEEP_REFRESH_SEC)
