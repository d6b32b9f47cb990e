from pydantic import BaseModel, Field
from datetime import datetime, time
from typing import Any


class PlaylistItemOut(BaseModel):
    id: int
    playlist_id: int
    plugin_id: int | None = None
    mashup: dict[str, Any] | None = None
    order: int
    is_active: bool
    last_displayed_at: datetime | None = None

    class Config:
        from_attributes = True


class PlaylistOut(BaseModel):
    id: int
    device_id: int
    name: str
    is_active: bool
    weekdays: list[int] | None = None
    active_from: time | None = None
    active_until: time | None = None
    refresh_time: int | None = None

    class Config:
        from_attributes = True


class MashupIn(BaseModel):
    layout: str
    plugin_ids: list[int] = Field(..., min_length=1)
    name: str | None = None
    order: int | None = None
