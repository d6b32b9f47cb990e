import re
from dataclasses import dataclass
from enum import Enum
from sqlalchemy.orm import Session
from inkframe.models.device import Device
from inkframe.models.device_model import DeviceModel

STANDARD_WIDTH = 800
STANDARD_HEIGHT = 480
STANDARD_ROTATION = 0
STANDARD_GEOMETRY = "standard"
PNG_FIRMWARE_MIN_VERSION = "1.5.2"


class ImageFormat(str, Enum):
    AUTO = "auto"
    PNG_8BIT_GRAYSCALE = "png_8bit_grayscale"
    BMP3_1BIT_SRGB = "bmp3_1bit_srgb"
    PNG_8BIT_256C = "png_8bit_256c"
    PNG_2BIT_4C = "png_2bit_4c"
    PNG_4BIT_16C = "png_4bit_16c"


# (mime_type, colors, bit_depth)
FORMAT_TABLE: dict[ImageFormat, tuple[str, int, int]] = {
    ImageFormat.AUTO: ("image/png", 2, 1),
    ImageFormat.PNG_8BIT_GRAYSCALE: ("image/png", 2, 8),
    ImageFormat.BMP3_1BIT_SRGB: ("image/bmp", 2, 1),
    ImageFormat.PNG_8BIT_256C: ("image/png", 256, 8),
    ImageFormat.PNG_2BIT_4C: ("image/png", 4, 2),
    ImageFormat.PNG_4BIT_16C: ("image/png", 16, 4),
}

DEFAULT_DEVICE_MODELS: list[dict] = [
    {
        "name": "og_png",
        "label": "TRMNL OG (1-bit)",
        "description": "800x480 monochrome panel, PNG firmware",
        "width": 800,
        "height": 480,
        "colors": 2,
        "bit_depth": 1,
        "mime_type": "image/png",
    },
    {
        "name": "og_bmp",
        "label": "TRMNL OG (legacy BMP)",
        "description": "800x480 monochrome panel on BMP-only firmware",
        "width": 800,
        "height": 480,
        "colors": 2,
        "bit_depth": 1,
        "mime_type": "image/bmp",
    },
    {
        "name": "og_plus",
        "label": "TRMNL OG (2-bit)",
        "description": "800x480 panel driven with four gray levels",
        "width": 800,
        "height": 480,
        "colors": 4,
        "bit_depth": 2,
        "mime_type": "image/png",
        "css_name": "og",
    },
    {
        "name": "v2",
        "label": "TRMNL X",
        "description": "1872x1404 panel with sixteen gray levels",
        "width": 1872,
        "height": 1404,
        "colors": 16,
        "bit_depth": 4,
        "scale_factor": 1.8,
        "mime_type": "image/png",
        "css_name": "v2",
    },
    {
        "name": "amazon_kindle_2024",
        "label": "Amazon Kindle 2024",
        "description": "Kindle in portrait, 8-bit grayscale",
        "width": 1400,
        "height": 840,
        "colors": 256,
        "bit_depth": 8,
        "scale_factor": 1.75,
        "rotation": 90,
        "mime_type": "image/png",
        "offset_x": 75,
        "offset_y": 25,
    },
    {
        "name": "spectra_6",
        "label": "Spectra 6 (7.3in)",
        "description": "800x480 six color panel",
        "width": 800,
        "height": 480,
        "colors": 6,
        "bit_depth": 4,
        "mime_type": "image/png",
        "palette": ["#000000", "#FFFFFF", "#FFFF00", "#FF0000", "#0000FF", "#00FF00"],
    },
]


@dataclass(frozen=True)
class ImageSettings:
    width: int = STANDARD_WIDTH
    height: int = STANDARD_HEIGHT
    colors: int = 2
    bit_depth: int = 1
    scale_factor: float = 1.0
    rotation: int = STANDARD_ROTATION
    mime_type: str = "image/png"
    offset_x: int = 0
    offset_y: int = 0
    palette: tuple[str, ...] | None = None
    css_name: str | None = None

    @property
    def extension(self) -> str:
        return "bmp" if "bmp" in self.mime_type else "png"

    @property
    def geometry(self) -> str:
        return geometry_class(self.width, self.height, self.rotation)

    @property
    def color_depth(self) -> str:
        return f"{self.bit_depth}bit"

    @property
    def viewport(self) -> tuple[int, int]:
        """CSS viewport the markup is laid out in, before rotation and scaling."""
        width, height = self.width, self.height
        if self.rotation % 180 == 90:
            width, height = height, width
        scale = self.scale_factor or 1.0
        return int(round(width / scale)), int(round(height / scale))


def geometry_class(width: int, height: int, rotation: int) -> str:
    if (width, height, rotation % 360) == (STANDARD_WIDTH, STANDARD_HEIGHT, STANDARD_ROTATION):
        return STANDARD_GEOMETRY
    return f"{width}x{height}r{rotation % 360}"


def parse_image_format(value: str | None) -> ImageFormat:
    try:
        return ImageFormat((value or "auto").strip().lower())
    except ValueError:
        return ImageFormat.AUTO


def _version_tuple(version: str) -> tuple[int, ...]:
    parts = [int(part) for part in re.findall(r"\d+", version or "")]
    return tuple(parts) or (0,)


def firmware_below(version: str | None, threshold: str = PNG_FIRMWARE_MIN_VERSION) -> bool:
    if not version:
        return False
    current = _version_tuple(version)
    target = _version_tuple(threshold)
    size = max(len(current), len(target))
    return current + (0,) * (size - len(current)) < target + (0,) * (size - len(target))


def settings_from_model(model: DeviceModel) -> ImageSettings:
    return ImageSettings(
        width=model.width,
        height=model.height,
        colors=model.colors,
        bit_depth=model.bit_depth,
        scale_factor=float(model.scale_factor or 1.0),
        rotation=int(model.rotation or 0) % 360,
        mime_type=model.mime_type or "image/png",
        offset_x=model.offset_x or 0,
        offset_y=model.offset_y or 0,
        palette=tuple(model.palette) if model.palette else None,
        css_name=model.css_name,
    )


def settings_from_format(fmt: ImageFormat, width: int, height: int, rotation: int) -> ImageSettings:
    mime_type, colors, bit_depth = FORMAT_TABLE[fmt]
    return ImageSettings(
        width=width,
        height=height,
        colors=colors,
        bit_depth=bit_depth,
        rotation=rotation % 360,
        mime_type=mime_type,
    )


def resolve_image_settings(db: Session, device: Device) -> ImageSettings:
    if device.device_model_id is not None:
        model = db.get(DeviceModel, device.device_model_id)
        if model is not None:
            return settings_from_model(model)

    width = device.width or STANDARD_WIDTH
    height = device.height or STANDARD_HEIGHT
    rotation = device.rotate or 0
    fmt = parse_image_format(device.image_format)
    if fmt is ImageFormat.AUTO and firmware_below(device.last_firmware_version):
        fmt = ImageFormat.BMP3_1BIT_SRGB
    return settings_from_format(fmt, width, height, rotation)


def device_geometry(db: Session, device: Device) -> str:
    return resolve_image_settings(db, device).geometry
