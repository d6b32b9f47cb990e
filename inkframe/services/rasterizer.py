import io
import logging
import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError
from inkframe.services.geometry import ImageSettings

DITHER_MARKER = "image-dither"

logger = logging.getLogger(__name__)


class RasterizationError(Exception):
    pass


def wants_dither(markup: str | None) -> bool:
    return bool(markup) and DITHER_MARKER in markup


def load_image(data: bytes) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise RasterizationError(f"Unreadable bitmap: {exc}") from exc
    return img


def _hex_to_rgb(value: str) -> tuple[int, int, int]:
    value = value.lstrip("#")
    return int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16)


def fit_to_geometry(img: Image.Image, settings: ImageSettings) -> Image.Image:
    target = (settings.width, settings.height)
    if settings.rotation % 180 == 90:
        target = (settings.height, settings.width)
    img = img.convert("RGB")
    if img.size != target:
        logger.debug("Resizing bitmap from %dx%d to %dx%d", img.width, img.height, *target)
        img = ImageOps.fit(img, target, method=Image.Resampling.LANCZOS)
    if settings.rotation:
        img = img.rotate(-settings.rotation, expand=True)
    if settings.offset_x or settings.offset_y:
        canvas = Image.new("RGB", img.size, "white")
        canvas.paste(img, (settings.offset_x, settings.offset_y))
        img = canvas
    return img


def _gray_levels(img: Image.Image, levels: int) -> Image.Image:
    gray = np.array(img.convert("L"), dtype=np.uint16)
    indices = ((gray * (levels - 1) + 127) // 255).astype(np.uint8)
    out = Image.frombytes("P", img.size, indices.tobytes())
    palette: list[int] = []
    for index in range(levels):
        value = round(index * 255 / (levels - 1))
        palette.extend([value, value, value])
    out.putpalette(palette)
    return out


def _to_palette(img: Image.Image, colors: list[tuple[int, int, int]], dither: bool) -> Image.Image:
    flat: list[int] = []
    for rgb in colors:
        flat.extend(rgb)
    # pad with the last color; padded indices are folded back below
    flat.extend(list(colors[-1]) * (256 - len(colors)))
    palette_img = Image.new("P", (1, 1))
    palette_img.putpalette(flat)
    dither_mode = Image.Dither.FLOYDSTEINBERG if dither else Image.Dither.NONE
    quantized = img.convert("RGB").quantize(palette=palette_img, dither=dither_mode)
    table = bytes(min(index, len(colors) - 1) for index in range(256))
    out = Image.frombytes("P", img.size, quantized.tobytes().translate(table))
    out.putpalette([channel for rgb in colors for channel in rgb])
    return out


def quantize(img: Image.Image, settings: ImageSettings, dither: bool = False) -> Image.Image:
    if settings.bit_depth == 1 or (settings.colors <= 2 and not settings.palette):
        mono = img.convert("L").convert(
            "1",
            dither=Image.Dither.FLOYDSTEINBERG if dither else Image.Dither.NONE,
        )
        if settings.bit_depth == 8:
            return mono.convert("L")
        return mono
    if settings.palette:
        return _to_palette(img, [_hex_to_rgb(color) for color in settings.palette], dither)
    if settings.bit_depth in (2, 4):
        return _gray_levels(img, min(settings.colors, 1 << settings.bit_depth))
    return img.convert("L")


def encode(img: Image.Image, settings: ImageSettings) -> bytes:
    buffer = io.BytesIO()
    if settings.extension == "bmp":
        if img.mode not in {"1", "L", "P"}:
            img = img.convert("1")
        img.save(buffer, format="BMP")
    elif img.mode == "P":
        img.save(buffer, format="PNG", bits=settings.bit_depth if settings.bit_depth in (1, 2, 4) else 8, optimize=True)
    else:
        img.save(buffer, format="PNG", optimize=True)
    return buffer.getvalue()


def rasterize(img: Image.Image, settings: ImageSettings, dither: bool = False) -> bytes:
    """Fit, rotate, quantize and encode a rendered bitmap for the device."""
    try:
        fitted = fit_to_geometry(img, settings)
        return encode(quantize(fitted, settings, dither), settings)
    except RasterizationError:
        raise
    except (OSError, ValueError) as exc:
        raise RasterizationError(f"Rasterization failed: {exc}") from exc
