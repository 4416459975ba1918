from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Callable, List, Optional, Tuple

from core.io import Raster

# Ranges the UI clamps to; the model itself stores whatever it is given.
SCALE_RANGE: Tuple[float, float] = (0.1, 3.0)
ROTATION_RANGE: Tuple[float, float] = (0.0, 360.0)
OPACITY_RANGE: Tuple[float, float] = (0.0, 1.0)


def clamp(value: float, bounds: Tuple[float, float]) -> float:
    lo, hi = bounds
    return max(lo, min(hi, float(value)))


@dataclass
class Transform:
    """
    Placement of the foreground over the background.

    x/y are the offset of the foreground centre from the background centre,
    in pixels of whichever canvas is being rendered (display or source).
    """
    x: float = 0.0
    y: float = 0.0
    scale: float = 1.0
    rotation: float = 0.0
    opacity: float = 1.0

    _listeners: List[Callable[["Transform"], None]] = field(
        default_factory=list, repr=False, compare=False
    )

    @classmethod
    def field_names(cls) -> Tuple[str, ...]:
        return tuple(f.name for f in fields(cls) if not f.name.startswith("_"))

    def update(self, **partial: float) -> None:
        names = self.field_names()
        for key in partial:
            if key not in names:
                raise TypeError(f"Unknown transform field: {key}")
        for key, value in partial.items():
            setattr(self, key, float(value))
        self._notify()

    def reset(self) -> None:
        self.x = 0.0
        self.y = 0.0
        self.scale = 1.0
        self.rotation = 0.0
        self.opacity = 1.0
        self._notify()

    def copy(self) -> "Transform":
        return replace(self, _listeners=[])

    def as_dict(self) -> dict:
        return {name: getattr(self, name) for name in self.field_names()}

    @property
    def rotation_display(self) -> float:
        return self.rotation % 360.0

    def subscribe(self, callback: Callable[["Transform"], None]) -> None:
        if callback not in self._listeners:
            self._listeners.append(callback)

    def unsubscribe(self, callback: Callable[["Transform"], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify(self) -> None:
        for cb in list(self._listeners):
            cb(self)


class ImageSlot:
    """
    Holds at most one Raster. The previous Raster's pixel buffer is released
    whenever it is replaced or cleared.
    """
    def __init__(self, name: str):
        self.name = name
        self._raster: Optional[Raster] = None

    @property
    def raster(self) -> Optional[Raster]:
        return self._raster

    @property
    def is_empty(self) -> bool:
        return self._raster is None

    def replace(self, raster: Optional[Raster]) -> None:
        old = self._raster
        self._raster = raster
        if old is not None and old is not raster:
            old.release()

    def clear(self) -> None:
        self.replace(None)
