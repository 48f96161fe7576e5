from .entity import (
    FOCUS_AREA_CREATED,
    FOCUS_AREA_DEACTIVATED,
    FOCUS_AREA_DELETED,
    FOCUS_AREA_UPDATED,
    FocusArea,
)
from .repository import FocusAreaRepository

__all__ = [
    "FocusArea",
    "FocusAreaRepository",
    "FOCUS_AREA_CREATED",
    "FOCUS_AREA_UPDATED",
    "FOCUS_AREA_DEACTIVATED",
    "FOCUS_AREA_DELETED",
]
