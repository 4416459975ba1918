from __future__ import annotations

import asyncio
import io
import logging
import mimetypes
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from core.errors import DecodeError, ExportError, InvalidInputError

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 * 1024 * 1024
JPEG_QUALITY = 90


@dataclass(eq=False)
class Raster:
    """Decoded RGBA pixels plus the upload they came from."""
    image: Image.Image
    name: str = ""
    byte_size: int = 0
    media_type: str = ""

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    @property
    def size(self) -> tuple[int, int]:
        return (self.image.width, self.image.height)

    def release(self) -> None:
        self.image.close()


def guess_media_type(name: str) -> str:
    media_type, _ = mimetypes.guess_type(name)
    return media_type or ""


def validate_upload(
    data: bytes,
    name: str = "",
    media_type: Optional[str] = None,
    max_bytes: int = MAX_UPLOAD_BYTES,
) -> str:
    """Reject uploads by type and size before anything is decoded. Returns the media type."""
    if media_type is None:
        media_type = guess_media_type(name)
    if not media_type.startswith("image/"):
        raise InvalidInputError("Please upload a valid image file")
    if len(data) > max_bytes:
        limit_mb = max_bytes / (1024 * 1024)
        raise InvalidInputError(f"File size must be less than {limit_mb:g}MB")
    if not data:
        raise InvalidInputError("File is empty")
    return media_type


def decode_raster(data: bytes, name: str = "", media_type: str = "") -> Raster:
    try:
        with Image.open(io.BytesIO(data)) as src:
            src.load()
            img = ImageOps.exif_transpose(src).convert("RGBA")
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
        raise DecodeError(f"Could not decode {name or 'image'}: {e}") from e
    if img.width <= 0 or img.height <= 0:
        raise DecodeError(f"{name or 'image'} has no pixels")
    return Raster(image=img, name=name, byte_size=len(data), media_type=media_type)


async def load_raster(
    data: bytes,
    name: str = "",
    media_type: Optional[str] = None,
    max_bytes: int = MAX_UPLOAD_BYTES,
) -> Raster:
    media_type = validate_upload(data, name=name, media_type=media_type, max_bytes=max_bytes)
    raster = await asyncio.to_thread(decode_raster, data, name, media_type)
    logger.info("Decoded %s (%dx%d, %d bytes)", name or "<bytes>", raster.width, raster.height, len(data))
    return raster


def read_upload(path: str) -> tuple[bytes, str, str]:
    p = Path(path)
    return p.read_bytes(), p.name, guess_media_type(p.name)


def encode_image(img: Image.Image, fmt: str = "png", quality: int = JPEG_QUALITY) -> bytes:
    buf = io.BytesIO()
    fmt = fmt.lower()
    if fmt in ("jpg", "jpeg"):
        # JPG has no alpha, so flatten onto white.
        rgba = img.convert("RGBA")
        flat = Image.new("RGB", rgba.size, (255, 255, 255))
        flat.paste(rgba, mask=rgba.split()[3])
        flat.save(buf, format="JPEG", quality=int(quality))
    else:
        img.save(buf, format="PNG")
    return buf.getvalue()


def _current_umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask


def write_file_atomic(path: Path, data: bytes) -> None:
    """Write via a temp file in the same directory so a failure never leaves a partial file."""
    path = Path(path)
    fd, tmp = tempfile.mkstemp(prefix=".tmp_", suffix=path.suffix, dir=str(path.parent))
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        # mkstemp creates 0600; give the result the mode a plain open() would.
        os.chmod(tmp, 0o666 & ~_current_umask())
        os.replace(tmp, path)
    except OSError as e:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise ExportError(path.name, str(e)) from e
