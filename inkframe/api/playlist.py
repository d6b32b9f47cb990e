from datetime import time
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session
from inkframe.db import get_db
from inkframe.models.device import Device
from inkframe.models.playlist import Playlist, PlaylistItem
from inkframe.models.plugin import Plugin
from inkframe.schemas.playlist import MashupIn, PlaylistItemOut, PlaylistOut
from inkframe.services import mashup

router = APIRouter(prefix="/playlists", tags=["playlists"])


def _parse_time(value: str | None, field_name: str) -> time | None:
    if value is None or not value.strip():
        return None
    try:
        return time.fromisoformat(value.strip())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"{field_name} must be HH:MM or HH:MM:SS") from exc


def _parse_weekdays(value: str | None) -> list[int] | None:
    raw = (value or "").strip()
    if not raw:
        return None
    days: list[int] = []
    for part in raw.split(","):
        part = part.strip()
        if not part.isdigit() or not 0 <= int(part) <= 6:
            raise HTTPException(status_code=400, detail="weekdays must be comma separated 0-6 (0 = Sunday)")
        if int(part) not in days:
            days.append(int(part))
    return sorted(days)


def _validate_window(active_from: time | None, active_until: time | None) -> None:
    if (active_from is None) != (active_until is None):
        raise HTTPException(status_code=400, detail="active_from and active_until must be set together")


def _get_playlist(db: Session, playlist_id: int) -> Playlist:
    playlist = db.get(Playlist, playlist_id)
    if not playlist:
        raise HTTPException(status_code=404, detail="Playlist not found")
    return playlist


def _next_order(db: Session, playlist_id: int) -> int:
    current = db.query(func.max(PlaylistItem.order)).filter(PlaylistItem.playlist_id == playlist_id).scalar()
    return (current or 0) + 1


@router.post("", response_model=PlaylistOut)
def create_playlist(
    device_id: int,
    name: str,
    is_active: bool = True,
    weekdays: str | None = None,
    active_from: str | None = None,
    active_until: str | None = None,
    refresh_time: int | None = None,
    db: Session = Depends(get_db),
):
    if not db.get(Device, device_id):
        raise HTTPException(status_code=400, detail="Unknown device_id")
    cleaned = name.strip()
    if not cleaned:
        raise HTTPException(status_code=400, detail="Playlist name cannot be empty")
    start = _parse_time(active_from, "active_from")
    end = _parse_time(active_until, "active_until")
    _validate_window(start, end)
    if refresh_time is not None and refresh_time <= 0:
        raise HTTPException(status_code=400, detail="refresh_time must be positive")
    playlist = Playlist(
        device_id=device_id,
        name=cleaned,
        is_active=is_active,
        weekdays=_parse_weekdays(weekdays),
        active_from=start,
        active_until=end,
        refresh_time=refresh_time,
    )
    db.add(playlist)
    db.commit()
    db.refresh(playlist)
    return playlist


@router.get("", response_model=list[PlaylistOut])
def list_playlists(device_id: int, db: Session = Depends(get_db)):
    return db.query(Playlist).filter(Playlist.device_id == device_id).order_by(Playlist.id.asc()).all()


@router.put("/{playlist_id}", response_model=PlaylistOut)
def update_playlist(
    playlist_id: int,
    name: str | None = None,
    is_active: bool | None = None,
    weekdays: str | None = None,
    active_from: str | None = None,
    active_until: str | None = None,
    clear_window: bool = False,
    refresh_time: int | None = None,
    db: Session = Depends(get_db),
):
    playlist = _get_playlist(db, playlist_id)
    if name is not None:
        cleaned = name.strip()
        if not cleaned:
            raise HTTPException(status_code=400, detail="Playlist name cannot be empty")
        playlist.name = cleaned
    if is_active is not None:
        playlist.is_active = is_active
    if weekdays is not None:
        playlist.weekdays = _parse_weekdays(weekdays)
    if clear_window:
        playlist.active_from = None
        playlist.active_until = None
    elif active_from is not None or active_until is not None:
        start = _parse_time(active_from, "active_from") if active_from is not None else playlist.active_from
        end = _parse_time(active_until, "active_until") if active_until is not None else playlist.active_until
        _validate_window(start, end)
        playlist.active_from = start
        playlist.active_until = end
    if refresh_time is not None:
        if refresh_time <= 0:
            raise HTTPException(status_code=400, detail="refresh_time must be positive")
        playlist.refresh_time = refresh_time
    db.commit()
    db.refresh(playlist)
    return playlist


@router.delete("/{playlist_id}")
def delete_playlist(playlist_id: int, db: Session = Depends(get_db)):
    playlist = _get_playlist(db, playlist_id)
    db.query(PlaylistItem).filter(PlaylistItem.playlist_id == playlist_id).delete(synchronize_session=False)
    db.delete(playlist)
    db.commit()
    return {"ok": True}


@router.post("/{playlist_id}/items", response_model=PlaylistItemOut)
def add_item(
    playlist_id: int,
    plugin_id: int,
    order: int | None = None,
    is_active: bool = True,
    db: Session = Depends(get_db),
):
    _get_playlist(db, playlist_id)
    if not db.get(Plugin, plugin_id):
        raise HTTPException(status_code=400, detail="Unknown plugin_id")
    item = PlaylistItem(
        playlist_id=playlist_id,
        plugin_id=plugin_id,
        order=order if order is not None else _next_order(db, playlist_id),
        is_active=is_active,
    )
    db.add(item)
    db.commit()
    db.refresh(item)
    return item


@router.post("/{playlist_id}/mashups", response_model=PlaylistItemOut)
def add_mashup(playlist_id: int, payload: MashupIn, db: Session = Depends(get_db)):
    _get_playlist(db, playlist_id)
    try:
        mashup.validate(payload.layout, payload.plugin_ids)
    except mashup.MashupConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    known = {row[0] for row in db.query(Plugin.id).filter(Plugin.id.in_(payload.plugin_ids)).all()}
    missing = sorted(set(payload.plugin_ids) - known)
    if missing:
        raise HTTPException(status_code=400, detail=f"Unknown plugin ids: {', '.join(str(pid) for pid in missing)}")
    item = PlaylistItem(
        playlist_id=playlist_id,
        mashup={
            "layout": payload.layout,
            "plugin_ids": payload.plugin_ids,
            "name": (payload.name or "").strip() or f"Mashup {payload.layout}",
        },
        order=payload.order if payload.order is not None else _next_order(db, playlist_id),
    )
    db.add(item)
    db.commit()
    db.refresh(item)
    return item


@router.get("/mashup-layouts")
def list_mashup_layouts():
    return [
        {"layout": layout, "label": mashup.LAYOUT_LABELS[layout], "required_plugins": len(regions)}
        for layout, regions in mashup.LAYOUT_REGIONS.items()
    ]


@router.get("/{playlist_id}/items", response_model=list[PlaylistItemOut])
def list_items(playlist_id: int, db: Session = Depends(get_db)):
    _get_playlist(db, playlist_id)
    return (
        db.query(PlaylistItem)
        .filter(PlaylistItem.playlist_id == playlist_id)
        .order_by(PlaylistItem.order.asc(), PlaylistItem.id.asc())
        .all()
    )


@router.put("/items/{item_id}", response_model=PlaylistItemOut)
def update_item(item_id: int, order: int | None = None, is_active: bool | None = None, db: Session = Depends(get_db)):
    item = db.get(PlaylistItem, item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Playlist item not found")
    if order is not None:
        item.order = order
    if is_active is not None:
        item.is_active = is_active
    db.commit()
    db.refresh(item)
    return item


@router.delete("/items/{item_id}")
def delete_item(item_id: int, db: Session = Depends(get_db)):
    item = db.get(PlaylistItem, item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Playlist item not found")
    db.delete(item)
    db.commit()
    return {"ok": True}
