from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from PIL import Image

from core.compositor import render_composite
from core.errors import DecodeError, RenderUnavailableError
from core.geometry import DisplayGeometry, display_geometry
from core.io import Raster, load_raster, validate_upload
from core.settings_io import EditorSettings
from core.state import ImageSlot, Transform

logger = logging.getLogger(__name__)


@dataclass
class RenderJob:
    """
    Everything an export needs, detached from the live session: private
    copies of both images and a snapshot of the display-space transform.
    """
    background: Image.Image
    foreground: Optional[Image.Image]
    transform: Transform
    settings: EditorSettings

    @property
    def native_size(self) -> tuple[int, int]:
        return self.background.size


class EditorSession:
    def __init__(self, settings: Optional[EditorSettings] = None):
        self.settings = settings or EditorSettings()
        self.transform = Transform()
        self.background = ImageSlot("background")
        self.foreground = ImageSlot("foreground")
        self._listeners: List[Callable[[], None]] = []
        self.transform.subscribe(lambda _t: self._notify())

    # ---- change notification ----
    def subscribe(self, callback: Callable[[], None]) -> None:
        if callback not in self._listeners:
            self._listeners.append(callback)

    def unsubscribe(self, callback: Callable[[], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify(self) -> None:
        for cb in list(self._listeners):
            cb()

    # ---- slots ----
    @property
    def has_background(self) -> bool:
        return not self.background.is_empty

    @property
    def has_foreground(self) -> bool:
        return not self.foreground.is_empty

    @property
    def can_export_composite(self) -> bool:
        return self.has_background

    @property
    def can_export_mask(self) -> bool:
        return self.has_background and self.has_foreground

    async def load_background(self, data: bytes, name: str = "", media_type: Optional[str] = None) -> Raster:
        return await self._load_into(self.background, data, name, media_type)

    async def load_foreground(self, data: bytes, name: str = "", media_type: Optional[str] = None) -> Raster:
        return await self._load_into(self.foreground, data, name, media_type)

    async def _load_into(
        self,
        slot: ImageSlot,
        data: bytes,
        name: str,
        media_type: Optional[str],
    ) -> Raster:
        # Rejected uploads leave the slot untouched.
        media_type = validate_upload(
            data, name=name, media_type=media_type, max_bytes=self.settings.max_upload_bytes
        )

        # The slot reads as empty while decoding.
        slot.clear()
        self._notify()
        try:
            raster = await load_raster(
                data, name=name, media_type=media_type, max_bytes=self.settings.max_upload_bytes
            )
        except DecodeError:
            logger.warning("Decode failed for %s image %r", slot.name, name)
            raise
        slot.replace(raster)
        logger.info("Loaded %s image %r (%dx%d)", slot.name, name, raster.width, raster.height)
        self._notify()
        return raster

    def clear_background(self) -> None:
        self.background.clear()
        self._notify()

    def clear_foreground(self) -> None:
        self.foreground.clear()
        self._notify()

    def close(self) -> None:
        self.background.clear()
        self.foreground.clear()

    # ---- preview ----
    def display_geometry(self) -> Optional[DisplayGeometry]:
        bg = self.background.raster
        if bg is None:
            return None
        return display_geometry(bg.size, self.settings.max_display_size)

    def render_preview(self) -> Optional[Image.Image]:
        geom = self.display_geometry()
        bg = self.background.raster
        if geom is None or bg is None:
            return None
        fg = self.foreground.raster
        return render_composite(
            bg.image,
            fg.image if fg is not None else None,
            self.transform,
            geom.pixel_size,
            high_quality=self.settings.high_quality_preview,
        )

    # ---- export ----
    def render_job(self, need_foreground: bool = False) -> RenderJob:
        bg = self.background.raster
        fg = self.foreground.raster
        if bg is None:
            raise RenderUnavailableError("background")
        if need_foreground and fg is None:
            raise RenderUnavailableError("foreground")
        return RenderJob(
            background=bg.image.copy(),
            foreground=fg.image.copy() if fg is not None else None,
            transform=self.transform.copy(),
            settings=self.settings,
        )
