from __future__ import annotations
from typing import Optional, Callable, Tuple

from PySide6.QtCore import Qt, QRectF
from PySide6.QtGui import QPainter, QImage, QPixmap, QColor, QPen
from PySide6.QtWidgets import QWidget

from core.preview import PreviewController


class CanvasWidget(QWidget):
    """
    Shows the display-space preview (QImage) centred and magnified by the
    controller's zoom.
    Supports:
      - left-drag: move the foreground (writes x/y through the controller)
      - wheel: view zoom in/out
    """
    def __init__(
        self,
        controller: PreviewController,
        on_zoom_changed: Optional[Callable[[float], None]] = None,
        parent: Optional[QWidget] = None,
    ):
        super().__init__(parent)
        self.setMouseTracking(True)
        self.setFocusPolicy(Qt.StrongFocus)
        self.setMinimumSize(400, 300)

        self._controller = controller
        self._on_zoom_changed = on_zoom_changed
        self._preview: Optional[QImage] = None
        self._canvas_size: Tuple[int, int] = (800, 600)
        self.has_foreground = False

    def set_preview(self, qimg: Optional[QImage], canvas_size: Tuple[int, int]) -> None:
        self._preview = qimg
        self._canvas_size = canvas_size
        self.update()

    def _widget_size(self) -> Tuple[int, int]:
        return (self.width(), self.height())

    def paintEvent(self, _) -> None:
        p = QPainter(self)
        p.fillRect(self.rect(), QColor(30, 30, 30))

        if self._preview is None:
            p.setPen(QPen(QColor(220, 220, 220)))
            p.drawText(
                self.rect(),
                Qt.AlignCenter,
                "No Background Image\nUpload a background image to start compositing",
            )
            return

        x0, y0, draw_w, draw_h = self._controller.canvas_rect(self._widget_size(), self._canvas_size)
        zoom = self._controller.zoom

        self._draw_checkerboard(p, QRectF(x0, y0, draw_w, draw_h), int(16 * zoom))

        p.setRenderHint(QPainter.SmoothPixmapTransform, True)
        pm = QPixmap.fromImage(self._preview)
        p.drawPixmap(QRectF(x0, y0, draw_w, draw_h), pm, QRectF(pm.rect()))

        p.setPen(QPen(QColor(240, 240, 240), 1))
        p.drawRect(QRectF(x0, y0, draw_w, draw_h))

        p.setPen(QPen(QColor(220, 220, 220)))
        cw, ch = self._canvas_size
        msg = f"Canvas: {cw} x {ch} | Zoom: {self._controller.zoom_percent}% | Wheel: zoom"
        if self.has_foreground:
            msg += " | Left-drag: position foreground"
        p.drawText(10, self.height() - 10, msg)

    def _draw_checkerboard(self, p: QPainter, r: QRectF, cell: int) -> None:
        if cell < 4:
            cell = 4
        c1 = QColor(60, 60, 60)
        c2 = QColor(90, 90, 90)

        x0 = int(r.left())
        y0 = int(r.top())
        x1 = int(r.right())
        y1 = int(r.bottom())

        for y in range(y0, y1, cell):
            for x in range(x0, x1, cell):
                use_c1 = ((x // cell) + (y // cell)) % 2 == 0
                p.fillRect(x, y, cell, cell, c1 if use_c1 else c2)

    def _canvas_pos(self, e) -> Optional[Tuple[float, float]]:
        pos = e.position()
        return self._controller.widget_to_canvas((pos.x(), pos.y()), self._widget_size(), self._canvas_size)

    def wheelEvent(self, e) -> None:
        delta = e.angleDelta().y()
        if delta == 0:
            return
        zoom = self._controller.zoom_in() if delta > 0 else self._controller.zoom_out()
        if self._on_zoom_changed is not None:
            self._on_zoom_changed(zoom)
        self.update()
        e.accept()

    def mousePressEvent(self, e) -> None:
        if e.button() != Qt.LeftButton or self._preview is None:
            return
        pos = self._canvas_pos(e)
        if pos is not None and self._controller.pointer_down(pos):
            self.setCursor(Qt.ClosedHandCursor)

    def mouseMoveEvent(self, e) -> None:
        if not self._controller.is_dragging:
            return
        pos = self._canvas_pos(e)
        if pos is not None:
            self._controller.pointer_move(pos)

    def mouseReleaseEvent(self, e) -> None:
        if e.button() == Qt.LeftButton:
            self._controller.pointer_up()
            self.unsetCursor()

    def leaveEvent(self, e) -> None:
        self._controller.pointer_leave()
        self.unsetCursor()
        super().leaveEvent(e)
