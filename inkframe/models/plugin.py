import uuid
from datetime import datetime
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Text, JSON
from inkframe.db import Base

PLUGIN_TYPES = ("recipe", "image_webhook")
DATA_STRATEGIES = ("static", "push", "pull")
MARKUP_LANGUAGES = ("liquid", "jinja")


class Plugin(Base):
    __tablename__ = "plugin"
    id = Column(Integer, primary_key=True, autoincrement=True)
    uuid = Column(String(36), nullable=False, unique=True)
    name = Column(String, nullable=False)
    plugin_type = Column(String, nullable=False, default="recipe")
    data_strategy = Column(String, nullable=False, default="static")
    data_stale_minutes = Column(Integer, nullable=True)
    polling_url = Column(Text, nullable=True)
    polling_verb = Column(String, nullable=False, default="get")
    polling_header = Column(Text, nullable=True)
    polling_body = Column(Text, nullable=True)
    data_payload = Column(JSON, nullable=True)
    data_payload_updated_at = Column(DateTime, nullable=True)
    render_markup = Column(Text, nullable=True)
    markup_language = Column(String, nullable=False, default="liquid")
    configuration = Column(JSON, nullable=True)
    configuration_template = Column(JSON, nullable=True)
    dark_mode = Column(Boolean, default=False)
    no_bleed = Column(Boolean, default=False)
    current_image = Column(String, nullable=True)
    current_image_geometry = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


def new_plugin(name: str, **fields) -> Plugin:
    """Build an unsaved plugin with a fresh public uuid."""
    fields.setdefault("plugin_type", "recipe")
    fields.setdefault("data_strategy", "static")
    fields.setdefault("markup_language", "liquid")
    fields.setdefault("polling_verb", "get")
    return Plugin(uuid=str(uuid.uuid4()), name=name, **fields)
