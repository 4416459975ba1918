from __future__ import annotations


class OverlayMatteError(Exception):
    pass


class InvalidInputError(OverlayMatteError):
    """Upload rejected before any state was touched (type, size, empty)."""


class DecodeError(OverlayMatteError):
    """Bytes were accepted but could not be decoded into a Raster."""


class RenderUnavailableError(OverlayMatteError):
    def __init__(self, missing: str):
        self.missing = missing
        super().__init__(f"No {missing} image loaded")


class ExportError(OverlayMatteError):
    def __init__(self, part: str, reason: str):
        self.part = part
        self.reason = reason
        super().__init__(f"Failed to export {part}: {reason}")
