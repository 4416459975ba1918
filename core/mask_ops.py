from __future__ import annotations

import logging
from typing import Tuple

import numpy as np
from PIL import Image

from core.compositor import pil_to_np_rgba, place_layer
from core.state import Transform

logger = logging.getLogger(__name__)

DEFAULT_ALPHA_THRESHOLD = 128


def binarize_alpha(alpha: np.ndarray, threshold: int = DEFAULT_ALPHA_THRESHOLD) -> np.ndarray:
    """HxW alpha -> HxW uint8 of 0/255. Strictly greater than threshold counts as covered."""
    if alpha.ndim != 2:
        raise ValueError("alpha must be HxW")
    return np.where(alpha > int(threshold), 255, 0).astype(np.uint8)


def silhouette_rgba(foreground: Image.Image, threshold: int = DEFAULT_ALPHA_THRESHOLD) -> Image.Image:
    """
    Opaque white where the foreground is covered, opaque black elsewhere,
    at the foreground's native resolution.
    """
    arr = pil_to_np_rgba(foreground)
    bw = binarize_alpha(arr[..., 3], threshold)
    out = np.empty_like(arr)
    out[..., 0] = bw
    out[..., 1] = bw
    out[..., 2] = bw
    out[..., 3] = 255
    return Image.fromarray(out)


def render_mask(
    background: Image.Image,
    foreground: Image.Image,
    transform: Transform,
    canvas_size: Tuple[int, int],
    alpha_threshold: int = DEFAULT_ALPHA_THRESHOLD,
) -> Image.Image:
    """
    Black canvas with the foreground's thresholded silhouette painted white
    at the same placement render_composite uses. Opacity is ignored, and
    nearest sampling keeps every pixel pure black or pure white.
    """
    out_w, out_h = int(canvas_size[0]), int(canvas_size[1])
    if out_w <= 0 or out_h <= 0:
        raise ValueError(f"Canvas size must be positive, got {canvas_size!r}")

    canvas = np.zeros((out_h, out_w), dtype=np.uint8)
    tile = place_layer(
        silhouette_rgba(foreground, alpha_threshold),
        background.size,
        (out_w, out_h),
        transform,
        resample=Image.Resampling.NEAREST,
        prefilter=False,
    )
    if tile is not None:
        arr = pil_to_np_rgba(tile)
        covered = (arr[..., 3] > 0) & (arr[..., 0] > 127)
        canvas[covered] = 255
    else:
        logger.debug("Mask placement is degenerate (scale=%r); mask left black", transform.scale)

    return Image.fromarray(np.repeat(canvas[..., None], 3, axis=2))
