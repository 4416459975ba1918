from __future__ import annotations

import logging
import math
from typing import Optional, Tuple

import numpy as np
from PIL import Image

from core.state import Transform

logger = logging.getLogger(__name__)

AffineCoeffs = Tuple[float, float, float, float, float, float]


def pil_to_np_rgba(img: Image.Image) -> np.ndarray:
    arr = np.array(img.convert("RGBA"), dtype=np.uint8)
    if arr.ndim != 3 or arr.shape[2] != 4:
        raise ValueError("Expected RGBA image")
    return arr


def np_rgba_to_pil(arr: np.ndarray) -> Image.Image:
    return Image.fromarray(arr)


def rendered_size(
    fg_size: Tuple[int, int],
    bg_size: Tuple[int, int],
    canvas_size: Tuple[int, int],
) -> Tuple[float, float]:
    """Foreground size on this canvas, keeping its size relative to the background."""
    fw, fh = fg_size
    bw, bh = bg_size
    cw, ch = canvas_size
    return (fw * cw / float(bw), fh * ch / float(bh))


def placement_affine(
    src_size: Tuple[int, int],
    draw_size: Tuple[float, float],
    canvas_size: Tuple[int, int],
    transform: Transform,
) -> Optional[AffineCoeffs]:
    """
    Inverse affine (canvas px -> source px) for Image.transform.

    Forward placement, applied to later drawing in this order:
      translate to canvas centre + (x, y), rotate clockwise, scale uniformly,
      then draw src stretched to draw_size centred on the origin.
    Returns None when the placement is degenerate (nothing would be drawn).
    """
    sw, sh = src_size
    dw, dh = draw_size
    s = float(transform.scale)
    if s == 0.0 or dw == 0.0 or dh == 0.0 or not math.isfinite(s):
        return None

    cw, ch = canvas_size
    tx = cw * 0.5 + float(transform.x)
    ty = ch * 0.5 + float(transform.y)
    theta = math.radians(float(transform.rotation))
    c = math.cos(theta)
    sn = math.sin(theta)

    kx = sw / (dw * s)
    ky = sh / (dh * s)
    a = c * kx
    b = sn * kx
    off_x = -(c * tx + sn * ty) * kx + sw * 0.5
    d = -sn * ky
    e = c * ky
    off_y = (sn * tx - c * ty) * ky + sh * 0.5
    return (a, b, off_x, d, e, off_y)


def place_layer(
    layer: Image.Image,
    bg_size: Tuple[int, int],
    canvas_size: Tuple[int, int],
    transform: Transform,
    resample: Image.Resampling,
    prefilter: bool = True,
) -> Optional[Image.Image]:
    """
    Return a canvas-sized RGBA tile with `layer` drawn at the transform's
    placement and transparent everywhere else.
    """
    draw_size = rendered_size(layer.size, bg_size, canvas_size)
    src = layer
    if prefilter:
        # Shrink first so the affine pass never decimates heavily.
        target_w = max(1, int(round(abs(draw_size[0] * transform.scale))))
        target_h = max(1, int(round(abs(draw_size[1] * transform.scale))))
        if target_w < src.width or target_h < src.height:
            src = src.resize(
                (min(target_w, src.width), min(target_h, src.height)),
                resample=Image.Resampling.LANCZOS,
            )

    coeffs = placement_affine(src.size, draw_size, canvas_size, transform)
    if coeffs is None:
        return None

    # Premultiplied so filtered edges do not pick up colour from transparent pixels.
    premul = src.convert("RGBa")
    placed = premul.transform(
        canvas_size,
        Image.Transform.AFFINE,
        coeffs,
        resample=resample,
        fillcolor=(0, 0, 0, 0),
    )
    return placed.convert("RGBA")


def _blend_over(base: np.ndarray, top: np.ndarray) -> np.ndarray:
    base_rgb = base[..., :3].astype(np.float32) / 255.0
    top_rgb = top[..., :3].astype(np.float32) / 255.0
    base_a = base[..., 3:4].astype(np.float32) / 255.0
    top_a = top[..., 3:4].astype(np.float32) / 255.0

    out_a = top_a + base_a * (1.0 - top_a)
    premul_top = top_rgb * top_a
    premul_base = base_rgb * base_a
    out_premul = premul_top + premul_base * (1.0 - top_a)
    out_rgb = np.where(out_a > 0, out_premul / np.maximum(out_a, 1e-6), 0.0)

    out = np.empty_like(base)
    out[..., :3] = np.clip(np.round(out_rgb * 255.0), 0, 255).astype(np.uint8)
    out[..., 3] = np.clip(np.round(out_a[..., 0] * 255.0), 0, 255).astype(np.uint8)
    return out


def render_composite(
    background: Image.Image,
    foreground: Optional[Image.Image],
    transform: Transform,
    canvas_size: Tuple[int, int],
    high_quality: bool = True,
) -> Image.Image:
    """
    Flatten foreground over background on a fresh canvas of canvas_size.

    The background is stretched to fill the canvas. The foreground keeps its
    size relative to the background's native size, so the same transform
    (expressed in this canvas's pixels) gives the same picture at any
    resolution. Inputs are never modified.
    """
    out_w, out_h = int(canvas_size[0]), int(canvas_size[1])
    if out_w <= 0 or out_h <= 0:
        raise ValueError(f"Canvas size must be positive, got {canvas_size!r}")
    resample = Image.Resampling.BICUBIC if high_quality else Image.Resampling.BILINEAR

    bg = background.convert("RGBA")
    if bg.size != (out_w, out_h):
        bg = bg.resize((out_w, out_h), resample=Image.Resampling.LANCZOS if high_quality else resample)
    base = pil_to_np_rgba(bg)

    if foreground is None:
        return np_rgba_to_pil(base)

    tile = place_layer(
        foreground.convert("RGBA"),
        background.size,
        (out_w, out_h),
        transform,
        resample=resample,
        prefilter=high_quality,
    )
    if tile is None:
        logger.debug("Foreground placement is degenerate (scale=%r); skipped", transform.scale)
        return np_rgba_to_pil(base)

    top = pil_to_np_rgba(tile)
    opacity = float(transform.opacity)
    if opacity < 1.0:
        a = top[..., 3].astype(np.float32)
        top[..., 3] = np.clip(np.round(a * max(0.0, opacity)), 0, 255).astype(np.uint8)

    return np_rgba_to_pil(_blend_over(base, top))
