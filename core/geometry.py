from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Tuple

from core.state import Transform

MAX_DISPLAY_SIZE: Tuple[int, int] = (800, 600)


@dataclass(frozen=True)
class DisplayGeometry:
    width: float
    height: float
    # native / display, identical on both axes
    ratio: float

    @property
    def pixel_size(self) -> Tuple[int, int]:
        return (max(1, int(round(self.width))), max(1, int(round(self.height))))


def _check_native(native_size: Tuple[float, float]) -> Tuple[float, float]:
    w, h = float(native_size[0]), float(native_size[1])
    if not (w > 0 and h > 0) or not (math.isfinite(w) and math.isfinite(h)):
        raise ValueError(f"Background size must be positive, got {native_size!r}")
    return w, h


def display_geometry(
    native_size: Tuple[float, float],
    max_size: Tuple[int, int] = MAX_DISPLAY_SIZE,
) -> DisplayGeometry:
    """
    Fit the background into max_size preserving aspect ratio.
    Width is constrained first, then height. Never upscales.
    """
    w, h = _check_native(native_size)
    max_w, max_h = float(max_size[0]), float(max_size[1])

    reduce = 1.0
    disp_w, disp_h = w, h
    if w > max_w:
        reduce = max_w / w
        disp_w, disp_h = max_w, h * reduce
    if disp_h > max_h:
        reduce = max_h / h
        disp_w, disp_h = w * reduce, max_h
    return DisplayGeometry(width=disp_w, height=disp_h, ratio=1.0 / reduce)


def scale_factor(
    native_size: Tuple[float, float],
    max_size: Tuple[int, int] = MAX_DISPLAY_SIZE,
) -> Tuple[float, float]:
    g = display_geometry(native_size, max_size)
    return (g.ratio, g.ratio)


def to_source_space(
    transform: Transform,
    background_native_size: Tuple[float, float],
    max_size: Tuple[int, int] = MAX_DISPLAY_SIZE,
) -> Transform:
    """Map a display-space transform onto the background's native pixels."""
    sx, sy = scale_factor(background_native_size, max_size)
    return Transform(
        x=transform.x * sx,
        y=transform.y * sy,
        scale=transform.scale,
        rotation=transform.rotation,
        opacity=transform.opacity,
    )

