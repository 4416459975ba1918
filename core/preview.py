from __future__ import annotations

from typing import Callable, Optional, Tuple

from core.state import Transform

ZOOM_RANGE: Tuple[float, float] = (0.5, 3.0)
ZOOM_STEP = 1.2


class PreviewController:
    """
    Pointer and zoom state for the preview canvas.

    Pointer positions are canvas-local display pixels. Dragging writes x/y
    straight into the live transform; zoom only changes on-screen
    magnification and never touches the transform.
    """
    def __init__(
        self,
        transform: Transform,
        has_foreground: Callable[[], bool],
        zoom_range: Tuple[float, float] = ZOOM_RANGE,
        zoom_step: float = ZOOM_STEP,
    ):
        self.transform = transform
        self._has_foreground = has_foreground
        self.zoom_range = zoom_range
        self.zoom_step = float(zoom_step)

        self.is_dragging = False
        self.drag_anchor: Tuple[float, float] = (0.0, 0.0)
        self.zoom = 1.0

    # ---- pointer ----
    def pointer_down(self, pos: Tuple[float, float]) -> bool:
        if not self._has_foreground():
            return False
        px, py = pos
        self.drag_anchor = (px - self.transform.x, py - self.transform.y)
        self.is_dragging = True
        return True

    def pointer_move(self, pos: Tuple[float, float]) -> bool:
        if not self.is_dragging or not self._has_foreground():
            return False
        px, py = pos
        ax, ay = self.drag_anchor
        self.transform.update(x=px - ax, y=py - ay)
        return True

    def pointer_up(self) -> None:
        self.is_dragging = False

    pointer_leave = pointer_up

    # ---- zoom ----
    def _set_zoom(self, value: float) -> float:
        lo, hi = self.zoom_range
        self.zoom = max(lo, min(hi, value))
        return self.zoom

    def zoom_in(self) -> float:
        return self._set_zoom(self.zoom * self.zoom_step)

    def zoom_out(self) -> float:
        return self._set_zoom(self.zoom / self.zoom_step)

    def reset_zoom(self) -> float:
        return self._set_zoom(1.0)

    @property
    def zoom_percent(self) -> int:
        return int(round(self.zoom * 100))

    def canvas_rect(
        self,
        widget_size: Tuple[int, int],
        canvas_size: Tuple[int, int],
    ) -> Tuple[float, float, float, float]:
        """(x0, y0, w, h) of the zoomed canvas, centred in the widget."""
        ww, wh = widget_size
        cw, ch = canvas_size
        draw_w = cw * self.zoom
        draw_h = ch * self.zoom
        return (ww * 0.5 - draw_w * 0.5, wh * 0.5 - draw_h * 0.5, draw_w, draw_h)

    def widget_to_canvas(
        self,
        pos: Tuple[float, float],
        widget_size: Tuple[int, int],
        canvas_size: Tuple[int, int],
    ) -> Optional[Tuple[float, float]]:
        """Widget px -> canvas-local display px. Positions outside the canvas are kept."""
        if self.zoom <= 1e-6:
            return None
        x0, y0, _, _ = self.canvas_rect(widget_size, canvas_size)
        return ((pos[0] - x0) / self.zoom, (pos[1] - y0) / self.zoom)
