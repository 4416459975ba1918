from __future__ import annotations

import json
import logging
import math
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from core.io import JPEG_QUALITY, MAX_UPLOAD_BYTES
from core.mask_ops import DEFAULT_ALPHA_THRESHOLD
from core.preview import ZOOM_RANGE, ZOOM_STEP

logger = logging.getLogger(__name__)

SETTINGS_VERSION = 1
SETTINGS_ENV_VAR = "OVERLAYMATTE_SETTINGS"
DEFAULT_SETTINGS_PATH = Path.home() / ".overlaymatte.json"


@dataclass
class EditorSettings:
    # Preview canvas bound
    max_display_width: int = 800
    max_display_height: int = 600

    # Upload
    max_upload_bytes: int = MAX_UPLOAD_BYTES

    # Export
    jpeg_quality: int = JPEG_QUALITY
    alpha_threshold: int = DEFAULT_ALPHA_THRESHOLD
    default_format: str = "png"
    export_dir: Optional[str] = None

    # View zoom
    zoom_min: float = ZOOM_RANGE[0]
    zoom_max: float = ZOOM_RANGE[1]
    zoom_step: float = ZOOM_STEP

    high_quality_preview: bool = True
    log_level: str = "WARNING"

    @property
    def max_display_size(self) -> Tuple[int, int]:
        return (self.max_display_width, self.max_display_height)

    @property
    def zoom_range(self) -> Tuple[float, float]:
        return (self.zoom_min, self.zoom_max)


def _format_from_raw(raw: object) -> str:
    fmt = str(raw or "png").lower()
    if fmt == "jpeg":
        fmt = "jpg"
    return fmt if fmt in ("png", "jpg") else "png"


def _zoom_from_raw(raw: dict, defaults: EditorSettings) -> Tuple[float, float, float]:
    """Zoom bounds must straddle 1.0 and the step must grow the zoom."""
    lo = float(raw.get("zoom_min", defaults.zoom_min))
    hi = float(raw.get("zoom_max", defaults.zoom_max))
    step = float(raw.get("zoom_step", defaults.zoom_step))
    if lo > hi:
        lo, hi = hi, lo
    if not (math.isfinite(lo) and 0.0 < lo <= 1.0):
        lo = defaults.zoom_min
    if not (math.isfinite(hi) and hi >= 1.0):
        hi = defaults.zoom_max
    if not (math.isfinite(step) and step > 1.0):
        step = defaults.zoom_step
    return lo, hi, step


def settings_from_raw(raw: dict) -> EditorSettings:
    defaults = EditorSettings()
    export_dir = raw.get("export_dir")
    zoom_min, zoom_max, zoom_step = _zoom_from_raw(raw, defaults)
    return EditorSettings(
        max_display_width=max(1, int(raw.get("max_display_width", defaults.max_display_width))),
        max_display_height=max(1, int(raw.get("max_display_height", defaults.max_display_height))),
        max_upload_bytes=max(1, int(raw.get("max_upload_bytes", defaults.max_upload_bytes))),
        jpeg_quality=max(1, min(100, int(raw.get("jpeg_quality", defaults.jpeg_quality)))),
        alpha_threshold=max(0, min(255, int(raw.get("alpha_threshold", defaults.alpha_threshold)))),
        default_format=_format_from_raw(raw.get("default_format", defaults.default_format)),
        export_dir=str(export_dir) if export_dir else None,
        zoom_min=zoom_min,
        zoom_max=zoom_max,
        zoom_step=zoom_step,
        high_quality_preview=bool(raw.get("high_quality_preview", defaults.high_quality_preview)),
        log_level=str(raw.get("log_level", defaults.log_level)).upper(),
    )


def settings_to_raw(settings: EditorSettings) -> dict:
    return {
        "max_display_width": settings.max_display_width,
        "max_display_height": settings.max_display_height,
        "max_upload_bytes": settings.max_upload_bytes,
        "jpeg_quality": settings.jpeg_quality,
        "alpha_threshold": settings.alpha_threshold,
        "default_format": settings.default_format,
        "export_dir": settings.export_dir,
        "zoom_min": settings.zoom_min,
        "zoom_max": settings.zoom_max,
        "zoom_step": settings.zoom_step,
        "high_quality_preview": bool(settings.high_quality_preview),
        "log_level": settings.log_level,
    }


def save_settings(path: str, settings: EditorSettings) -> None:
    payload = {"version": SETTINGS_VERSION, "settings": settings_to_raw(settings)}
    Path(path).write_text(json.dumps(payload, indent=2), encoding="utf-8")


def load_settings(path: str) -> EditorSettings:
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    settings_raw = raw.get("settings", {}) if isinstance(raw, dict) else {}
    if not isinstance(settings_raw, dict):
        settings_raw = {}
    return settings_from_raw(settings_raw)


def default_settings_path() -> Path:
    env = os.environ.get(SETTINGS_ENV_VAR)
    return Path(env) if env else DEFAULT_SETTINGS_PATH


def load_user_settings() -> EditorSettings:
    """Settings from $OVERLAYMATTE_SETTINGS or ~/.overlaymatte.json, defaults if absent or unreadable."""
    path = default_settings_path()
    if not path.exists():
        return EditorSettings()
    try:
        return load_settings(str(path))
    except (OSError, ValueError, TypeError) as e:
        logger.warning("Ignoring unreadable settings file %s: %s", path, e)
        return EditorSettings()
