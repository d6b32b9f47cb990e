from datetime import datetime
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Time, ForeignKey, JSON
from inkframe.db import Base


class Playlist(Base):
    __tablename__ = "playlist"
    id = Column(Integer, primary_key=True, autoincrement=True)
    device_id = Column(Integer, ForeignKey("device.id"), nullable=False)
    name = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    weekdays = Column(JSON, nullable=True)
    active_from = Column(Time, nullable=True)
    active_until = Column(Time, nullable=True)
    refresh_time = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class PlaylistItem(Base):
    __tablename__ = "playlist_item"
    id = Column(Integer, primary_key=True, autoincrement=True)
    playlist_id = Column(Integer, ForeignKey("playlist.id"), nullable=False)
    plugin_id = Column(Integer, ForeignKey("plugin.id"), nullable=True)
    mashup = Column(JSON, nullable=True)
    order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    last_displayed_at = Column(DateTime, nullable=True)

    @property
    def is_mashup(self) -> bool:
        return bool(self.mashup)

    @property
    def mashup_layout(self) -> str | None:
        return (self.mashup or {}).get("layout")

    @property
    def mashup_plugin_ids(self) -> list[int]:
        return [int(pid) for pid in (self.mashup or {}).get("plugin_ids", [])]
