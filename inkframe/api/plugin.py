import os
import json
import logging
from fastapi import APIRouter, Depends, HTTPException, Request
from starlette.datastructures import UploadFile
from sqlalchemy.orm import Session
from inkframe.db import get_db
from inkframe.api.display import storage_url
from inkframe.models.playlist import PlaylistItem
from inkframe.models.plugin import Plugin, new_plugin
from inkframe.schemas.plugin import PluginIn, PluginOut, PluginPatch, WebhookIn, missing_required_fields
from inkframe.services import content_source, image_cache, scheduler, storage

router = APIRouter(prefix="/plugins", tags=["plugins"])
logger = logging.getLogger(__name__)


def _get_plugin(db: Session, plugin_id: int) -> Plugin:
    plugin = db.get(Plugin, plugin_id)
    if not plugin:
        raise HTTPException(status_code=404, detail="Plugin not found")
    return plugin


def _get_plugin_by_uuid(db: Session, plugin_uuid: str) -> Plugin:
    plugin = db.query(Plugin).filter(Plugin.uuid == plugin_uuid).first()
    if not plugin:
        raise HTTPException(status_code=404, detail="Plugin not found")
    return plugin


def _check_pull_settings(plugin: Plugin) -> None:
    if plugin.data_strategy == "pull" and not (plugin.polling_url or "").strip():
        raise HTTPException(status_code=400, detail="polling_url is required for pull plugins")


def _check_configuration(plugin: Plugin) -> None:
    missing = missing_required_fields(plugin.configuration_template, plugin.configuration)
    if missing:
        raise HTTPException(status_code=400, detail=f"Missing required configuration: {', '.join(missing)}")


@router.post("", response_model=PluginOut)
def create_plugin(payload: PluginIn, db: Session = Depends(get_db)):
    fields = payload.model_dump(exclude={"name", "configuration_template", "data_payload"})
    plugin = new_plugin(payload.name.strip(), **fields)
    if payload.configuration_template is not None:
        plugin.configuration_template = [field.model_dump() for field in payload.configuration_template]
    if payload.data_payload is not None:
        plugin.data_payload = payload.data_payload
    _check_pull_settings(plugin)
    _check_configuration(plugin)
    db.add(plugin)
    db.commit()
    db.refresh(plugin)
    return plugin


@router.get("", response_model=list[PluginOut])
def list_plugins(db: Session = Depends(get_db)):
    return db.query(Plugin).order_by(Plugin.id.asc()).all()


@router.get("/{plugin_id}", response_model=PluginOut)
def get_plugin(plugin_id: int, db: Session = Depends(get_db)):
    return _get_plugin(db, plugin_id)


@router.put("/{plugin_id}", response_model=PluginOut)
def update_plugin(plugin_id: int, payload: PluginPatch, db: Session = Depends(get_db)):
    plugin = _get_plugin(db, plugin_id)
    changes = payload.model_dump(exclude_unset=True, exclude={"configuration_template"})
    if "name" in changes and not (changes["name"] or "").strip():
        raise HTTPException(status_code=400, detail="Plugin name cannot be empty")
    for key, value in changes.items():
        setattr(plugin, key, value)
    if "data_payload" in changes:
        plugin.data_payload_updated_at = scheduler.utcnow()
    if payload.configuration_template is not None:
        plugin.configuration_template = [field.model_dump() for field in payload.configuration_template]
    _check_pull_settings(plugin)
    _check_configuration(plugin)
    if plugin.plugin_type != "image_webhook":
        # markup or data settings changed, the cached raster no longer matches
        plugin.current_image = None
        plugin.current_image_geometry = None
    db.commit()
    db.refresh(plugin)
    return plugin


@router.delete("/{plugin_id}")
def delete_plugin(plugin_id: int, db: Session = Depends(get_db)):
    plugin = _get_plugin(db, plugin_id)
    db.query(PlaylistItem).filter(PlaylistItem.plugin_id == plugin.id).delete(synchronize_session=False)
    for item in db.query(PlaylistItem).filter(PlaylistItem.mashup.isnot(None)).all():
        if plugin.id in item.mashup_plugin_ids:
            db.delete(item)
    db.delete(plugin)
    db.commit()
    return {"ok": True}


@router.post("/{plugin_uuid}/webhook")
def push_data(plugin_uuid: str, payload: WebhookIn, db: Session = Depends(get_db)):
    plugin = _get_plugin_by_uuid(db, plugin_uuid)
    if plugin.data_strategy != "push":
        raise HTTPException(status_code=400, detail="Plugin does not accept pushed data")
    content_source.apply_push(plugin, payload.merge_variables, scheduler.utcnow())
    db.commit()
    logger.info("Plugin %s received pushed data", plugin.id)
    return {"ok": True}


async def _read_image(request: Request) -> tuple[bytes, str | None]:
    """Multipart `image` file, JSON `image` data URI, or a raw PNG/BMP body."""
    content_type = request.headers.get("content-type", "").lower()
    if content_type.startswith("multipart/form-data"):
        form = await request.form()
        upload = form.get("image")
        if not isinstance(upload, UploadFile):
            raise ValueError("No image data provided")
        _, extension = os.path.splitext(upload.filename or "")
        return await upload.read(), extension.lstrip(".") or None
    body = await request.body()
    if "application/json" in content_type:
        try:
            data = json.loads(body or b"{}")
        except ValueError as exc:
            raise ValueError("Invalid JSON body") from exc
        image = data.get("image") if isinstance(data, dict) else None
        if not isinstance(image, str) or not image:
            raise ValueError("No image data provided")
        return storage.decode_data_uri(image)
    if body.strip() in (b"", b"{}"):
        raise ValueError("No image data provided")
    return body, None


@router.post("/{plugin_uuid}/image")
async def upload_image(plugin_uuid: str, request: Request, db: Session = Depends(get_db)):
    plugin = _get_plugin_by_uuid(db, plugin_uuid)
    if plugin.plugin_type != "image_webhook":
        raise HTTPException(status_code=400, detail="Plugin is not an image webhook plugin")
    try:
        content, declared = await _read_image(request)
        extension = storage.validate_image_upload(content, declared)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    image_uuid = image_cache.store(content, extension)
    plugin.current_image = image_uuid
    plugin.current_image_geometry = None
    db.commit()
    logger.info("Plugin %s received image %s.%s", plugin.id, image_uuid, extension)
    return {
        "message": "Image uploaded successfully",
        "image_url": storage_url(request, image_cache.generated_relative_path(image_uuid, extension)),
    }
