import os
import re
import base64

STORAGE_DIR = os.getenv("INKFRAME_STORAGE_DIR", "storage")
GENERATED_SUBDIR = "images/generated"
DEFAULT_SCREENS_SUBDIR = "images/default-screens"
MAX_UPLOAD_BYTES = int(os.getenv("INKFRAME_MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))
IMAGE_SIGNATURES = {"png": b"\x89PNG\r\n\x1a\n", "bmp": b"BM"}
EXTENSION_ALIASES = {"x-ms-bmp": "bmp"}
DATA_URI_PATTERN = re.compile(r"^data:image/([\w.+-]+);base64,", re.IGNORECASE)


def generated_dir() -> str:
    return os.path.join(STORAGE_DIR, GENERATED_SUBDIR)


def default_screens_dir() -> str:
    return os.path.join(STORAGE_DIR, DEFAULT_SCREENS_SUBDIR)


def ensure_storage() -> None:
    os.makedirs(generated_dir(), exist_ok=True)
    os.makedirs(default_screens_dir(), exist_ok=True)


def absolute_path(relative_path: str) -> str:
    return os.path.join(STORAGE_DIR, relative_path)


def write_file(relative_path: str, content: bytes) -> str:
    """Write `content` below the storage root and return its forward-slash relative path."""
    if not content:
        raise ValueError("Refusing to store an empty file")
    path = absolute_path(relative_path)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    tmp_path = f"{path}.tmp"
    with open(tmp_path, "wb") as f:
        f.write(content)
    os.replace(tmp_path, path)
    return relative_path.replace("\\", "/")


def decode_data_uri(value: str) -> tuple[bytes, str]:
    match = DATA_URI_PATTERN.match(value or "")
    if not match:
        raise ValueError("Invalid image format. Expected base64 data URI.")
    try:
        content = base64.b64decode(value[match.end():], validate=True)
    except ValueError as exc:
        raise ValueError("Invalid base64 image data") from exc
    return content, match.group(1).lower()


def validate_image_upload(content: bytes, declared_extension: str | None = None) -> str:
    """Check an uploaded raster and return its extension (png or bmp)."""
    if not content or not content.strip():
        raise ValueError("No image data provided")
    if len(content) > MAX_UPLOAD_BYTES:
        raise ValueError(f"Image exceeds the {MAX_UPLOAD_BYTES // (1024 * 1024)} MB upload limit")
    detected = next((ext for ext, signature in IMAGE_SIGNATURES.items() if content.startswith(signature)), None)
    if detected is None:
        raise ValueError("Unsupported image format. Expected PNG or BMP.")
    declared = (declared_extension or "").lower()
    if declared and EXTENSION_ALIASES.get(declared, declared) != detected:
        raise ValueError("Unsupported image format. Expected PNG or BMP.")
    return detected
