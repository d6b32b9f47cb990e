import os
import logging
from dataclasses import dataclass
from datetime import datetime
from sqlalchemy.orm import Session
from inkframe.models.device import Device
from inkframe.models.playlist import PlaylistItem
from inkframe.models.plugin import Plugin
from inkframe.services import content_source, image_cache, mashup, scheduler, storage
from inkframe.services.geometry import ImageSettings, resolve_image_settings
from inkframe.services.rasterizer import rasterize
from inkframe.services.render import RenderPipeline

logger = logging.getLogger(__name__)


@dataclass
class DisplayResolution:
    image_path: str
    refresh_rate: int | None = None
    source: str = "setup"
    image_uuid: str | None = None

    @property
    def filename(self) -> str:
        return os.path.basename(self.image_path)


def default_screen(pipeline: RenderPipeline, kind: str, settings: ImageSettings, label: str | None = None) -> str:
    """Return the storage path of a built-in screen, drawing it on first use."""
    suffix = f"_{label}" if label else ""
    filename = (
        f"{kind}{suffix}_{settings.width}_{settings.height}_{settings.bit_depth}"
        f"_{settings.colors}_{settings.rotation}.{settings.extension}"
    )
    relative_path = f"{storage.DEFAULT_SCREENS_SUBDIR}/{filename}"
    if os.path.exists(storage.absolute_path(relative_path)):
        return relative_path
    image = pipeline.render_default_screen(kind, settings, label)
    return storage.write_file(relative_path, rasterize(image, settings))


def _generated(image_uuid: str, settings: ImageSettings) -> str | None:
    return image_cache.resolve_image_path(image_uuid, settings.extension)


def _refresh_plugin(plugin: Plugin, now: datetime) -> None:
    content_source.refresh_payload(plugin, now)


def _render_single(
    db: Session,
    plugin: Plugin,
    settings: ImageSettings,
    pipeline: RenderPipeline,
    now: datetime,
    tz: str,
) -> str:
    image_cache.reset_if_not_cacheable(db, plugin)
    stale = content_source.is_stale(plugin, now)
    cached = image_cache.lookup(plugin, settings.geometry, settings.extension)
    if cached and not stale:
        return cached

    _refresh_plugin(plugin, now)
    frame = pipeline.render_plugin(plugin, settings, now, tz)
    image_uuid = image_cache.store(rasterize(frame.image, settings, frame.dither), settings.extension)
    if not frame.failed:
        image_cache.remember(plugin, image_uuid, settings.geometry)
    return image_uuid


def _render_mashup(
    db: Session,
    item: PlaylistItem,
    settings: ImageSettings,
    pipeline: RenderPipeline,
    now: datetime,
    tz: str,
) -> str:
    layout = item.mashup_layout
    plugin_ids = item.mashup_plugin_ids
    mashup.validate(layout, plugin_ids)
    found = {p.id: p for p in db.query(Plugin).filter(Plugin.id.in_(plugin_ids)).all()}
    plugins = [found[pid] for pid in plugin_ids if pid in found]
    if len(plugins) != len(plugin_ids):
        raise mashup.MashupConfigurationError(f"Mashup item {item.id} references missing plugins")
    for plugin in plugins:
        image_cache.reset_if_not_cacheable(db, plugin)
        if content_source.is_stale(plugin, now) or plugin.current_image is None:
            _refresh_plugin(plugin, now)
    label = (item.mashup or {}).get("name") or "Mashup"
    frame = pipeline.render_mashup(layout, plugins, settings, now, tz, label)
    return image_cache.store(rasterize(frame.image, settings, frame.dither), settings.extension)


def _render_item(
    db: Session,
    item: PlaylistItem,
    settings: ImageSettings,
    pipeline: RenderPipeline,
    now: datetime,
    tz: str,
) -> str | None:
    if item.is_mashup:
        try:
            return _render_mashup(db, item, settings, pipeline, now, tz)
        except mashup.MashupConfigurationError as exc:
            logger.error("Mashup item %s is misconfigured: %s", item.id, exc)
            image = pipeline.render_default_screen("error", settings, (item.mashup or {}).get("name") or "Mashup")
            return image_cache.store(rasterize(image, settings), settings.extension)
    plugin = db.get(Plugin, item.plugin_id) if item.plugin_id is not None else None
    if plugin is None:
        logger.warning("Playlist item %s has no plugin", item.id)
        return None
    if plugin.plugin_type == "image_webhook":
        # uploaded rasters are shown as delivered
        return plugin.current_image
    return _render_single(db, plugin, settings, pipeline, now, tz)


def resolve_for_device(
    db: Session,
    device: Device,
    pipeline: RenderPipeline,
    now: datetime | None = None,
) -> DisplayResolution:
    """
    Decide what `device` shows now and make sure the raster exists.

    Mirrors, pause and sleep short-circuit scheduling. Otherwise the active
    playlist advances by one item, which is committed before rendering.
    RasterizationError propagates to the caller.
    """
    now = now or scheduler.utcnow()
    settings = resolve_image_settings(db, device)
    tz = scheduler.device_timezone(device)

    if device.mirror_device_id is not None:
        mirrored = db.get(Device, device.mirror_device_id)
        if mirrored is not None and mirrored.current_screen_image:
            path = _generated(mirrored.current_screen_image, settings)
            if path:
                device.current_screen_image = mirrored.current_screen_image
                db.commit()
                return DisplayResolution(path, None, "mirror", mirrored.current_screen_image)
        return DisplayResolution(default_screen(pipeline, "setup", settings, device.friendly_id), None, "setup")

    if scheduler.is_paused(device, now):
        refresh = scheduler.pause_remaining_seconds(device, now)
        return DisplayResolution(default_screen(pipeline, "sleep", settings), refresh, "pause")

    if scheduler.is_sleeping(device, now):
        refresh = scheduler.sleep_remaining_seconds(device, now)
        return DisplayResolution(default_screen(pipeline, "sleep", settings), refresh, "sleep")

    playlist = scheduler.resolve_active_playlist(db, device, now)
    item = scheduler.resolve_next_item(db, playlist, now) if playlist is not None else None
    if item is None:
        return DisplayResolution(default_screen(pipeline, "setup", settings, device.friendly_id), None, "setup")
    db.commit()

    image_uuid = _render_item(db, item, settings, pipeline, now, tz)
    path = _generated(image_uuid, settings) if image_uuid else None
    if path is None:
        db.commit()
        return DisplayResolution(default_screen(pipeline, "setup", settings, device.friendly_id), None, "setup")

    device.current_screen_image = image_uuid
    db.commit()
    return DisplayResolution(
        path,
        playlist.refresh_time,
        "mashup" if item.is_mashup else "playlist",
        image_uuid,
    )


def current_screen(db: Session, device: Device, pipeline: RenderPipeline) -> DisplayResolution:
    """Last resolved raster, without advancing any schedule."""
    settings = resolve_image_settings(db, device)
    if device.current_screen_image:
        path = _generated(device.current_screen_image, settings)
        if path:
            return DisplayResolution(path, None, "current", device.current_screen_image)
    return DisplayResolution(default_screen(pipeline, "setup", settings, device.friendly_id), None, "setup")
