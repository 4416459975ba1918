from __future__ import annotations
from typing import Callable, Optional

from PySide6.QtCore import Qt
from PySide6.QtGui import QPixmap
from PySide6.QtWidgets import (
    QWidget, QVBoxLayout, QHBoxLayout, QPushButton, QLabel, QFileDialog
)

from core.io import Raster

IMAGE_FILTER = "Images (*.png *.jpg *.jpeg *.bmp *.webp *.gif *.tif *.tiff)"


def format_file_size(num_bytes: int) -> str:
    if num_bytes <= 0:
        return "0 Bytes"
    for unit in ("Bytes", "KB"):
        if num_bytes < 1024:
            return f"{num_bytes:.2f}".rstrip("0").rstrip(".") + f" {unit}"
        num_bytes /= 1024.0
    return f"{num_bytes:.2f}".rstrip("0").rstrip(".") + " MB"


class ImageSlotWidget(QWidget):
    """
    One upload slot (background or foreground):
    - Browse button or drag-drop a file onto the widget
    - Shows a thumbnail plus size/type/dimension info of the loaded Raster
    - Clear button empties the slot
    """
    def __init__(
        self,
        title: str,
        placeholder: str,
        on_file_chosen: Callable[[str], None],
        on_clear: Callable[[], None],
        parent: Optional[QWidget] = None,
    ):
        super().__init__(parent)
        self._title = title
        self._on_file_chosen = on_file_chosen
        self._on_clear = on_clear
        self.setAcceptDrops(True)

        self.thumb = QLabel(placeholder)
        self.thumb.setAlignment(Qt.AlignCenter)
        self.thumb.setMinimumHeight(120)
        self.thumb.setStyleSheet("QLabel { border: 2px dashed #666; color: #aaa; }")

        self.info = QLabel("")
        self.info.setWordWrap(True)

        browse_btn = QPushButton("Browse...")
        browse_btn.clicked.connect(self.browse)

        self.clear_btn = QPushButton("Clear")
        self.clear_btn.clicked.connect(self._on_clear)
        self.clear_btn.setEnabled(False)

        row = QHBoxLayout()
        row.addWidget(browse_btn)
        row.addWidget(self.clear_btn)

        lay = QVBoxLayout()
        lay.addWidget(self.thumb)
        lay.addWidget(self.info)
        lay.addLayout(row)
        self.setLayout(lay)
        self._placeholder = placeholder

    def browse(self) -> None:
        path, _ = QFileDialog.getOpenFileName(self, f"Open {self._title}", "", IMAGE_FILTER)
        if path:
            self._on_file_chosen(path)

    def show_raster(self, raster: Optional[Raster], thumb: Optional[QPixmap] = None) -> None:
        if raster is None:
            self.thumb.setPixmap(QPixmap())
            self.thumb.setText(self._placeholder)
            self.info.setText("")
            self.clear_btn.setEnabled(False)
            return

        if thumb is not None and not thumb.isNull():
            self.thumb.setPixmap(thumb.scaled(240, 120, Qt.KeepAspectRatio, Qt.SmoothTransformation))
        kind = raster.media_type.split("/")[-1].upper() if raster.media_type else "?"
        self.info.setText(
            f"{raster.name}\n{raster.width} x {raster.height} | "
            f"{format_file_size(raster.byte_size)} | {kind}"
        )
        self.clear_btn.setEnabled(True)

    def dragEnterEvent(self, e) -> None:
        if e.mimeData().hasUrls():
            e.acceptProposedAction()

    def dropEvent(self, e) -> None:
        urls = e.mimeData().urls()
        if not urls:
            return
        path = urls[0].toLocalFile()
        if path:
            self._on_file_chosen(path)
