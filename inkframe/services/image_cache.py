import os
import time
import uuid
import logging
from sqlalchemy.orm import Session
from inkframe.models.device import Device
from inkframe.models.device_model import DeviceModel
from inkframe.models.plugin import Plugin
from inkframe.services.geometry import STANDARD_GEOMETRY, geometry_class
from inkframe.services import storage

IMAGE_EXTENSIONS = ("png", "bmp")
GC_MIN_AGE_SEC = int(os.getenv("INKFRAME_IMAGE_GC_MIN_AGE_SEC", "300"))

logger = logging.getLogger(__name__)


def has_non_standard_geometry(db: Session) -> bool:
    devices = db.query(Device.width, Device.height, Device.rotate, Device.device_model_id).all()
    model_ids = set()
    for width, height, rotate, model_id in devices:
        if model_id is not None:
            model_ids.add(model_id)
            continue
        if geometry_class(width or 800, height or 480, rotate or 0) != STANDARD_GEOMETRY:
            return True
    if not model_ids:
        return False
    models = db.query(DeviceModel).filter(DeviceModel.id.in_(list(model_ids))).all()
    return any(geometry_class(m.width, m.height, m.rotation or 0) != STANDARD_GEOMETRY for m in models)


def reset_if_not_cacheable(db: Session, plugin: Plugin) -> bool:
    """Drop the plugin's shared raster while any device needs a non-standard geometry."""
    if plugin.current_image is None or plugin.plugin_type == "image_webhook":
        return False
    if not has_non_standard_geometry(db):
        return False
    logger.info("Plugin %s cache reset: non-standard device geometry present", plugin.id)
    plugin.current_image = None
    plugin.current_image_geometry = None
    return True


def generated_relative_path(image_uuid: str, extension: str) -> str:
    return f"{storage.GENERATED_SUBDIR}/{image_uuid}.{extension}"


def resolve_image_path(image_uuid: str, preferred_extension: str = "png") -> str | None:
    candidates = [preferred_extension] + [ext for ext in IMAGE_EXTENSIONS if ext != preferred_extension]
    for extension in candidates:
        relative_path = generated_relative_path(image_uuid, extension)
        if os.path.exists(storage.absolute_path(relative_path)):
            return relative_path
    return None


def lookup(plugin: Plugin, geometry: str, extension: str) -> str | None:
    if not plugin.current_image or plugin.current_image_geometry != geometry:
        return None
    relative_path = generated_relative_path(plugin.current_image, extension)
    if not os.path.exists(storage.absolute_path(relative_path)):
        return None
    return plugin.current_image


def remember(plugin: Plugin, image_uuid: str, geometry: str) -> None:
    plugin.current_image = image_uuid
    plugin.current_image_geometry = geometry


def store(raster: bytes, extension: str) -> str:
    image_uuid = str(uuid.uuid4())
    storage.write_file(generated_relative_path(image_uuid, extension), raster)
    logger.info("Stored raster %s.%s (%d bytes)", image_uuid, extension, len(raster))
    return image_uuid


def cleanup_generated(db: Session, min_age_sec: int | None = None) -> int:
    """
    Delete generated rasters no device or plugin references anymore.

    Files younger than `min_age_sec` are kept: a request may have written them
    and not committed the reference yet.
    """
    min_age_sec = GC_MIN_AGE_SEC if min_age_sec is None else min_age_sec
    cutoff = time.time() - min_age_sec
    folder = storage.generated_dir()
    if not os.path.isdir(folder):
        return 0
    active = {
        row[0]
        for row in db.query(Device.current_screen_image).filter(Device.current_screen_image.isnot(None)).all()
    }
    active.update(
        row[0]
        for row in db.query(Plugin.current_image).filter(Plugin.current_image.isnot(None)).all()
    )
    removed = 0
    for filename in os.listdir(folder):
        if filename == ".gitignore" or filename.endswith(".tmp"):
            continue
        stem, _ = os.path.splitext(filename)
        if stem in active:
            continue
        path = os.path.join(folder, filename)
        try:
            if os.path.getmtime(path) > cutoff:
                continue
            os.remove(path)
            removed += 1
        except FileNotFoundError:
            continue
    if removed:
        logger.info("Image GC removed %d unreferenced rasters", removed)
    return removed
