from sqlalchemy import Column, String, Integer, Float, JSON
from inkframe.db import Base


class DeviceModel(Base):
    __tablename__ = "device_model"
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False, unique=True)
    label = Column(String, nullable=False)
    description = Column(String, nullable=True)
    width = Column(Integer, nullable=False)
    height = Column(Integer, nullable=False)
    colors = Column(Integer, nullable=False, default=2)
    bit_depth = Column(Integer, nullable=False, default=1)
    scale_factor = Column(Float, nullable=False, default=1.0)
    rotation = Column(Integer, nullable=False, default=0)
    mime_type = Column(String, nullable=False, default="image/png")
    offset_x = Column(Integer, nullable=False, default=0)
    offset_y = Column(Integer, nullable=False, default=0)
    palette = Column(JSON, nullable=True)
    css_name = Column(String, nullable=True)
