from __future__ import annotations
import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

from PIL import Image

from PySide6.QtCore import Qt
from PySide6.QtGui import QAction, QImage, QKeySequence, QPixmap
from PySide6.QtWidgets import (
    QMainWindow, QWidget, QFileDialog, QVBoxLayout, QHBoxLayout, QLabel,
    QSlider, QPushButton, QMessageBox, QDockWidget, QDoubleSpinBox, QComboBox,
    QGroupBox, QScrollArea
)

from core.errors import (
    DecodeError, ExportError, InvalidInputError, OverlayMatteError, RenderUnavailableError
)
from core.export import ExportFormat, ExportResult, export_both, export_composite, export_mask
from core.io import read_upload
from core.preview import PreviewController
from core.session import EditorSession
from core.settings_io import EditorSettings
from core.state import OPACITY_RANGE, ROTATION_RANGE, SCALE_RANGE, ImageSlot, clamp
from ui.canvas_widget import CanvasWidget
from ui.image_slot_widget import ImageSlotWidget

logger = logging.getLogger(__name__)

T = TypeVar("T")


def pil_rgba_to_qimage(img: Image.Image) -> QImage:
    img = img.convert("RGBA")
    w, h = img.size
    data = img.tobytes("raw", "RGBA")
    qimg = QImage(data, w, h, QImage.Format_RGBA8888)
    # Important: keep a copy because Python-owned bytes may be freed
    return qimg.copy()


class MainWindow(QMainWindow):
    def __init__(self, settings: Optional[EditorSettings] = None):
        super().__init__()
        self.setWindowTitle("OverlayMatte v0.1")

        self.settings = settings or EditorSettings()
        self.session = EditorSession(self.settings)
        self.controller = PreviewController(
            self.session.transform,
            has_foreground=lambda: self.session.has_foreground,
            zoom_range=self.settings.zoom_range,
            zoom_step=self.settings.zoom_step,
        )
        self._export_dir: Optional[str] = self.settings.export_dir

        # Central
        self.canvas = CanvasWidget(self.controller, on_zoom_changed=lambda _z: self._update_status())
        central = QWidget()
        lay = QVBoxLayout()
        lay.addWidget(self.canvas)
        central.setLayout(lay)
        self.setCentralWidget(central)

        self._build_menu()
        self._build_controls_dock()

        self.session.subscribe(self._rerender)
        self.resize(1280, 820)
        self._rerender()

    def closeEvent(self, e) -> None:
        self.session.close()
        super().closeEvent(e)

    # ---------------------------
    # Menu / Actions
    # ---------------------------
    def _build_menu(self) -> None:
        open_bg_act = QAction("Open Background...", self)
        open_bg_act.setShortcut(QKeySequence.StandardKey.Open)
        open_bg_act.triggered.connect(lambda: self.bg_slot_widget.browse())

        open_fg_act = QAction("Open Foreground...", self)
        open_fg_act.setShortcut("Ctrl+Shift+O")
        open_fg_act.triggered.connect(lambda: self.fg_slot_widget.browse())

        self._act_export_composite = QAction("Export Composite...", self)
        self._act_export_composite.setShortcut(QKeySequence.StandardKey.Save)
        self._act_export_composite.triggered.connect(self.export_composite)

        self._act_export_mask = QAction("Export Mask...", self)
        self._act_export_mask.triggered.connect(self.export_mask)

        self._act_export_both = QAction("Export Both...", self)
        self._act_export_both.setShortcut("Ctrl+Shift+S")
        self._act_export_both.triggered.connect(self.export_both)

        quit_act = QAction("Quit", self)
        quit_act.setShortcut(QKeySequence.StandardKey.Quit)
        quit_act.triggered.connect(self.close)

        zoom_in_act = QAction("Zoom In", self)
        zoom_in_act.setShortcut(QKeySequence.StandardKey.ZoomIn)
        zoom_in_act.triggered.connect(self._zoom_in)

        zoom_out_act = QAction("Zoom Out", self)
        zoom_out_act.setShortcut(QKeySequence.StandardKey.ZoomOut)
        zoom_out_act.triggered.connect(self._zoom_out)

        reset_zoom_act = QAction("Reset Zoom", self)
        reset_zoom_act.setShortcut("Ctrl+0")
        reset_zoom_act.triggered.connect(self._reset_zoom)

        reset_tx_act = QAction("Reset Transform", self)
        reset_tx_act.setShortcut("R")
        reset_tx_act.triggered.connect(self._reset_transform)

        mfile = self.menuBar().addMenu("File")
        mfile.addAction(open_bg_act)
        mfile.addAction(open_fg_act)
        mfile.addSeparator()
        mfile.addAction(self._act_export_composite)
        mfile.addAction(self._act_export_mask)
        mfile.addAction(self._act_export_both)
        mfile.addSeparator()
        mfile.addAction(quit_act)

        mview = self.menuBar().addMenu("View")
        mview.addAction(zoom_in_act)
        mview.addAction(zoom_out_act)
        mview.addAction(reset_zoom_act)
        mview.addSeparator()
        mview.addAction(reset_tx_act)

    # ---------------------------
    # Controls dock
    # ---------------------------
    def _build_controls_dock(self) -> None:
        dock = QDockWidget("Controls", self)
        dock.setAllowedAreas(Qt.LeftDockWidgetArea | Qt.RightDockWidgetArea)

        root = QWidget()
        root_lay = QVBoxLayout(root)

        scroll = QScrollArea()
        scroll.setWidgetResizable(True)
        panel = QWidget()
        v = QVBoxLayout(panel)

        g_bg, gl_bg = self._make_group("Background Image")
        self.bg_slot_widget = ImageSlotWidget(
            "Background",
            "Drop a background image here",
            on_file_chosen=lambda path: self._load_path(self.session.background, path),
            on_clear=self._clear_background,
        )
        gl_bg.addWidget(self.bg_slot_widget)
        v.addWidget(g_bg)

        g_fg, gl_fg = self._make_group("Foreground Image")
        self.fg_slot_widget = ImageSlotWidget(
            "Foreground",
            "Drop a foreground image here (PNG with transparency works best)",
            on_file_chosen=lambda path: self._load_path(self.session.foreground, path),
            on_clear=self._clear_foreground,
        )
        gl_fg.addWidget(self.fg_slot_widget)
        v.addWidget(g_fg)

        self.g_tx, gl_tx = self._make_group("Transform")
        pos_row = QHBoxLayout()
        pos_row.addWidget(QLabel("X"))
        self.pos_x_spin = QDoubleSpinBox()
        self.pos_x_spin.setRange(-20000.0, 20000.0)
        self.pos_x_spin.setDecimals(0)
        self.pos_x_spin.valueChanged.connect(lambda val: self.session.transform.update(x=val))
        pos_row.addWidget(self.pos_x_spin, 1)
        pos_row.addWidget(QLabel("Y"))
        self.pos_y_spin = QDoubleSpinBox()
        self.pos_y_spin.setRange(-20000.0, 20000.0)
        self.pos_y_spin.setDecimals(0)
        self.pos_y_spin.valueChanged.connect(lambda val: self.session.transform.update(y=val))
        pos_row.addWidget(self.pos_y_spin, 1)
        gl_tx.addLayout(pos_row)

        # Scale: slider in hundredths, spin in plain factor
        self.scale_slider = QSlider(Qt.Horizontal)
        self.scale_slider.setRange(int(SCALE_RANGE[0] * 100), int(SCALE_RANGE[1] * 100))
        self.scale_slider.setSingleStep(5)
        self.scale_slider.valueChanged.connect(lambda val: self._set_scale(val / 100.0))
        self.scale_spin = QDoubleSpinBox()
        self.scale_spin.setRange(*SCALE_RANGE)
        self.scale_spin.setDecimals(2)
        self.scale_spin.setSingleStep(0.01)
        self.scale_spin.valueChanged.connect(self._set_scale)
        self.scale_val = QLabel("100%")
        gl_tx.addLayout(self._slider_row("Scale", self.scale_slider, self.scale_spin, self.scale_val))

        self.rot_slider = QSlider(Qt.Horizontal)
        self.rot_slider.setRange(int(ROTATION_RANGE[0]), int(ROTATION_RANGE[1]))
        self.rot_slider.valueChanged.connect(lambda val: self._set_rotation(float(val)))
        self.rot_spin = QDoubleSpinBox()
        self.rot_spin.setRange(*ROTATION_RANGE)
        self.rot_spin.setDecimals(0)
        self.rot_spin.setSuffix("°")
        self.rot_spin.valueChanged.connect(self._set_rotation)
        self.rot_val = QLabel("0°")
        gl_tx.addLayout(self._slider_row("Rotation", self.rot_slider, self.rot_spin, self.rot_val))

        self.opacity_slider = QSlider(Qt.Horizontal)
        self.opacity_slider.setRange(0, 100)
        self.opacity_slider.valueChanged.connect(lambda val: self._set_opacity(val / 100.0))
        self.opacity_val = QLabel("100%")
        gl_tx.addLayout(self._slider_row("Opacity", self.opacity_slider, None, self.opacity_val))

        self.reset_tx_btn = QPushButton("Reset Transform")
        self.reset_tx_btn.clicked.connect(self._reset_transform)
        gl_tx.addWidget(self.reset_tx_btn)
        v.addWidget(self.g_tx)

        g_exp, gl_exp = self._make_group("Export")
        fmt_row = QHBoxLayout()
        fmt_row.addWidget(QLabel("Format"))
        self.format_combo = QComboBox()
        self.format_combo.addItem("PNG", userData=ExportFormat.PNG)
        self.format_combo.addItem("JPG", userData=ExportFormat.JPEG)
        for i in range(self.format_combo.count()):
            fmt = self.format_combo.itemData(i)
            tip = (
                "Lossless, keeps transparency"
                if fmt.lossless
                else f"Lossy (quality {self.settings.jpeg_quality}), transparency flattened to white"
            )
            self.format_combo.setItemData(i, tip, Qt.ToolTipRole)
        if self.settings.default_format == "jpg":
            self.format_combo.setCurrentIndex(1)
        fmt_row.addWidget(self.format_combo, 1)
        gl_exp.addLayout(fmt_row)
        self.export_composite_btn = QPushButton("Export Composite")
        self.export_composite_btn.clicked.connect(self.export_composite)
        gl_exp.addWidget(self.export_composite_btn)
        self.export_mask_btn = QPushButton("Export Mask")
        self.export_mask_btn.clicked.connect(self.export_mask)
        gl_exp.addWidget(self.export_mask_btn)
        self.export_both_btn = QPushButton("Export Both")
        self.export_both_btn.clicked.connect(self.export_both)
        gl_exp.addWidget(self.export_both_btn)
        self.export_hint = QLabel("")
        self.export_hint.setWordWrap(True)
        gl_exp.addWidget(self.export_hint)
        v.addWidget(g_exp)

        v.addStretch(1)
        scroll.setWidget(panel)
        root_lay.addWidget(scroll)
        dock.setWidget(root)
        self.addDockWidget(Qt.RightDockWidgetArea, dock)

    def _make_group(self, title: str) -> tuple[QGroupBox, QVBoxLayout]:
        g = QGroupBox(title)
        gl = QVBoxLayout()
        g.setLayout(gl)
        return g, gl

    def _slider_row(
        self,
        label: str,
        slider: QSlider,
        spin: Optional[QDoubleSpinBox],
        value_label: QLabel,
    ) -> QVBoxLayout:
        col = QVBoxLayout()
        head = QHBoxLayout()
        head.addWidget(QLabel(label))
        head.addStretch(1)
        head.addWidget(value_label)
        col.addLayout(head)
        row = QHBoxLayout()
        row.addWidget(slider, 1)
        if spin is not None:
            row.addWidget(spin)
        col.addLayout(row)
        return col

    # ---------------------------
    # Transform edits (UI clamps, the model does not)
    # ---------------------------
    def _set_scale(self, value: float) -> None:
        self.session.transform.update(scale=clamp(value, SCALE_RANGE))

    def _set_rotation(self, value: float) -> None:
        self.session.transform.update(rotation=clamp(value, ROTATION_RANGE))

    def _set_opacity(self, value: float) -> None:
        self.session.transform.update(opacity=clamp(value, OPACITY_RANGE))

    def _reset_transform(self) -> None:
        self.session.transform.reset()

    def _zoom_in(self) -> None:
        self.controller.zoom_in()
        self.canvas.update()
        self._update_status()

    def _zoom_out(self) -> None:
        self.controller.zoom_out()
        self.canvas.update()
        self._update_status()

    def _reset_zoom(self) -> None:
        self.controller.reset_zoom()
        self.canvas.update()
        self._update_status()

    # ---------------------------
    # Image loading
    # ---------------------------
    def _load_path(self, slot: ImageSlot, path: str) -> None:
        try:
            data, name, media_type = read_upload(path)
        except OSError as e:
            QMessageBox.critical(self, "Open failed", str(e))
            return

        loader = self.session.load_background if slot is self.session.background else self.session.load_foreground
        try:
            self._run(loader(data, name=name, media_type=media_type))
        except InvalidInputError as e:
            logger.warning("Rejected %s upload %s: %s", slot.name, name, e)
            QMessageBox.warning(self, "Invalid image", str(e))
            return
        except DecodeError as e:
            QMessageBox.critical(self, "Open failed", str(e))
            self._sync_slot_widgets()
            return
        self._sync_slot_widgets()
        self.statusBar().showMessage(f"{slot.name.capitalize()} image loaded successfully!", 3000)

    def _clear_background(self) -> None:
        self.session.clear_background()
        self._sync_slot_widgets()

    def _clear_foreground(self) -> None:
        self.session.clear_foreground()
        self._sync_slot_widgets()

    def _sync_slot_widgets(self) -> None:
        for slot, widget in (
            (self.session.background, self.bg_slot_widget),
            (self.session.foreground, self.fg_slot_widget),
        ):
            raster = slot.raster
            thumb = None
            if raster is not None:
                small = raster.image.copy()
                small.thumbnail((240, 120))
                thumb = QPixmap.fromImage(pil_rgba_to_qimage(small))
            widget.show_raster(raster, thumb)

    # ---------------------------
    # Export
    # ---------------------------
    def _run(self, coro: Awaitable[T]) -> T:
        return asyncio.run(coro)

    def _choose_export_dir(self) -> Optional[str]:
        start = self._export_dir or str(Path.home())
        path = QFileDialog.getExistingDirectory(self, "Export To Folder", start)
        if not path:
            return None
        self._export_dir = path
        return path

    def _export_format(self) -> ExportFormat:
        return self.format_combo.currentData() or ExportFormat.PNG

    def _do_export(
        self,
        label: str,
        action: Callable[[str], Awaitable[ExportResult]],
    ) -> None:
        out_dir = self._choose_export_dir()
        if out_dir is None:
            return
        self.setCursor(Qt.WaitCursor)
        try:
            result = self._run(action(out_dir))
        except RenderUnavailableError as e:
            QMessageBox.warning(self, "Nothing to export", str(e))
            return
        except ExportError as e:
            logger.error("%s export failed: %s", label, e)
            QMessageBox.critical(self, "Export failed", str(e))
            return
        except OverlayMatteError as e:
            QMessageBox.critical(self, "Export failed", str(e))
            return
        finally:
            self.unsetCursor()
        names = ", ".join(p.name for p in result.paths)
        self.statusBar().showMessage(f"{label} exported successfully: {names}", 5000)

    def export_composite(self) -> None:
        if not self.session.can_export_composite:
            QMessageBox.warning(self, "Nothing to export", "No background image to export")
            return
        fmt = self._export_format()
        self._do_export("Composite", lambda d: export_composite(self.session, d, fmt))

    def export_mask(self) -> None:
        if not self.session.can_export_mask:
            QMessageBox.warning(
                self, "Nothing to export", "Need both background and foreground images to generate mask"
            )
            return
        self._do_export("Mask", lambda d: export_mask(self.session, d))

    def export_both(self) -> None:
        if not self.session.can_export_mask:
            QMessageBox.warning(self, "Nothing to export", "Need both images to export")
            return
        fmt = self._export_format()
        self._do_export("Composite and mask", lambda d: export_both(self.session, d, fmt))

    # ---------------------------
    # Rendering
    # ---------------------------
    def _rerender(self) -> None:
        preview = self.session.render_preview()
        geom = self.session.display_geometry()
        if preview is None or geom is None:
            self.canvas.set_preview(None, (0, 0))
        else:
            self.canvas.set_preview(pil_rgba_to_qimage(preview), geom.pixel_size)
        self.canvas.has_foreground = self.session.has_foreground
        self._sync_ui_from_state()
        self._update_status()

    def _sync_ui_from_state(self) -> None:
        t = self.session.transform
        widgets = (
            self.pos_x_spin, self.pos_y_spin, self.scale_slider, self.scale_spin,
            self.rot_slider, self.rot_spin, self.opacity_slider,
        )
        for w in widgets:
            w.blockSignals(True)
        self.pos_x_spin.setValue(round(t.x))
        self.pos_y_spin.setValue(round(t.y))
        self.scale_slider.setValue(int(round(t.scale * 100)))
        self.scale_spin.setValue(t.scale)
        rotation = clamp(t.rotation, ROTATION_RANGE)
        self.rot_slider.setValue(int(round(rotation)))
        self.rot_spin.setValue(rotation)
        self.opacity_slider.setValue(int(round(t.opacity * 100)))
        for w in widgets:
            w.blockSignals(False)
        self.scale_val.setText(f"{round(t.scale * 100)}%")
        self.rot_val.setText(f"{round(t.rotation_display)}°")
        self.opacity_val.setText(f"{round(t.opacity * 100)}%")

        has_fg = self.session.has_foreground
        self.g_tx.setEnabled(has_fg)
        self.export_composite_btn.setEnabled(self.session.can_export_composite)
        self._act_export_composite.setEnabled(self.session.can_export_composite)
        self.export_mask_btn.setEnabled(self.session.can_export_mask)
        self._act_export_mask.setEnabled(self.session.can_export_mask)
        self.export_both_btn.setEnabled(self.session.can_export_mask)
        self._act_export_both.setEnabled(self.session.can_export_mask)
        if not self.session.can_export_composite:
            self.export_hint.setText("Upload a background image to enable export options")
        elif not self.session.can_export_mask:
            self.export_hint.setText("Upload a foreground image to enable mask generation")
        else:
            self.export_hint.setText("")

    def _update_status(self) -> None:
        bg = self.session.background.raster
        fg = self.session.foreground.raster
        geom = self.session.display_geometry()
        t = self.session.transform
        bg_size = f"{bg.width}x{bg.height}" if bg is not None else "none"
        fg_size = f"{fg.width}x{fg.height}" if fg is not None else "none"
        canvas = f"{geom.pixel_size[0]}x{geom.pixel_size[1]}" if geom is not None else "-"
        msg = (
            f"Background: {bg_size} | Foreground: {fg_size} | Canvas: {canvas} | "
            f"Position: ({round(t.x)}, {round(t.y)}) | Scale: {t.scale * 100:.0f}% | "
            f"Rot: {t.rotation_display:.0f}° | Opacity: {t.opacity * 100:.0f}% | "
            f"Zoom: {self.controller.zoom_percent}%"
        )
        self.statusBar().showMessage(msg)
