from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from PIL import Image

from core.compositor import render_composite
from core.errors import ExportError, OverlayMatteError
from core.geometry import to_source_space
from core.io import encode_image, write_file_atomic
from core.mask_ops import render_mask
from core.session import EditorSession, RenderJob

logger = logging.getLogger(__name__)

COMPOSITE_PREFIX = "composite"
MASK_PREFIX = "mask"


class ExportFormat(enum.Enum):
    PNG = "png"
    JPEG = "jpg"

    @property
    def extension(self) -> str:
        return self.value

    @property
    def lossless(self) -> bool:
        return self is ExportFormat.PNG

    @classmethod
    def parse(cls, value: "str | ExportFormat") -> "ExportFormat":
        if isinstance(value, ExportFormat):
            return value
        v = str(value).lower().lstrip(".")
        if v in ("jpg", "jpeg"):
            return cls.JPEG
        if v == "png":
            return cls.PNG
        raise ValueError(f"Unsupported export format: {value!r}")


@dataclass
class EncodedImage:
    part: str
    filename: str
    data: bytes


@dataclass
class ExportResult:
    paths: List[Path] = field(default_factory=list)


def timestamp_ms() -> int:
    return int(time.time() * 1000)


def export_filename(prefix: str, fmt: ExportFormat, stamp: int) -> str:
    return f"{prefix}_{stamp}.{fmt.extension}"


def render_source_composite(job: RenderJob) -> Image.Image:
    source_tx = to_source_space(job.transform, job.native_size, job.settings.max_display_size)
    return render_composite(job.background, job.foreground, source_tx, job.native_size)


def render_source_mask(job: RenderJob) -> Image.Image:
    source_tx = to_source_space(job.transform, job.native_size, job.settings.max_display_size)
    return render_mask(
        job.background,
        job.foreground,
        source_tx,
        job.native_size,
        alpha_threshold=job.settings.alpha_threshold,
    )


def _encode_composite(job: RenderJob, fmt: ExportFormat, stamp: int) -> EncodedImage:
    try:
        img = render_source_composite(job)
        data = encode_image(img, fmt.extension, quality=job.settings.jpeg_quality)
    except Exception as e:
        raise ExportError("composite", str(e)) from e
    return EncodedImage("composite", export_filename(COMPOSITE_PREFIX, fmt, stamp), data)


def _encode_mask(job: RenderJob, stamp: int) -> EncodedImage:
    try:
        img = render_source_mask(job)
        data = encode_image(img, ExportFormat.PNG.extension)
    except Exception as e:
        raise ExportError("mask", str(e)) from e
    return EncodedImage("mask", export_filename(MASK_PREFIX, ExportFormat.PNG, stamp), data)


async def encode_composite(job: RenderJob, fmt: ExportFormat, stamp: Optional[int] = None) -> EncodedImage:
    return await asyncio.to_thread(_encode_composite, job, fmt, stamp if stamp is not None else timestamp_ms())


async def encode_mask(job: RenderJob, stamp: Optional[int] = None) -> EncodedImage:
    return await asyncio.to_thread(_encode_mask, job, stamp if stamp is not None else timestamp_ms())


def _deliver(out_dir: Path, encoded: List[EncodedImage]) -> ExportResult:
    out_dir = Path(out_dir)
    try:
        out_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ExportError(encoded[0].part if encoded else "export", str(e)) from e

    result = ExportResult()
    for item in encoded:
        path = out_dir / item.filename
        try:
            write_file_atomic(path, item.data)
        except ExportError as e:
            # Withdraw files already written by this export.
            for written in result.paths:
                written.unlink(missing_ok=True)
            raise ExportError(item.part, e.reason) from e
        result.paths.append(path)
        logger.info("Wrote %s (%d bytes)", path, len(item.data))
    return result


async def export_composite(
    session: EditorSession,
    out_dir: "str | Path",
    fmt: "str | ExportFormat" = ExportFormat.PNG,
) -> ExportResult:
    job = session.render_job()
    encoded = await encode_composite(job, ExportFormat.parse(fmt))
    return await asyncio.to_thread(_deliver, Path(out_dir), [encoded])


async def export_mask(session: EditorSession, out_dir: "str | Path") -> ExportResult:
    job = session.render_job(need_foreground=True)
    encoded = await encode_mask(job)
    return await asyncio.to_thread(_deliver, Path(out_dir), [encoded])


async def export_both(
    session: EditorSession,
    out_dir: "str | Path",
    fmt: "str | ExportFormat" = ExportFormat.PNG,
) -> ExportResult:
    """
    Render and encode composite and mask concurrently. Files are written only
    once both have succeeded; the first failure is raised and nothing is left
    on disk.
    """
    job = session.render_job(need_foreground=True)
    stamp = timestamp_ms()
    results = await asyncio.gather(
        encode_composite(job, ExportFormat.parse(fmt), stamp),
        encode_mask(job, stamp),
        return_exceptions=True,
    )
    failures = [r for r in results if isinstance(r, BaseException)]
    for failure in failures:
        logger.error("Export part failed: %s", failure)
    if failures:
        first = failures[0]
        if isinstance(first, OverlayMatteError):
            raise first
        raise ExportError("composite and mask", str(first)) from first
    return await asyncio.to_thread(_deliver, Path(out_dir), list(results))
