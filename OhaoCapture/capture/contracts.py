from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from PIL import Image

from OhaoCapture.capture.selection import map_selection_to_pixels


class CaptureError(str, Enum):
    NO_PRIMARY_DISPLAY = "NoPrimaryDisplay"
    PORTAL_UNAVAILABLE = "PortalUnavailable"
    PORTAL_USER_CANCELLED = "PortalUserCancelled"
    PORTAL_TIMEOUT = "PortalTimeout"
    PORTAL_MALFORMED_RESPONSE = "PortalMalformedResponse"
    PORTAL_ERROR = "PortalError"
    IMAGE_DECODE_FAILURE = "ImageDecodeFailure"
    UNSUPPORTED_PLATFORM = "UnsupportedPlatform"


class CaptureFailure(Exception):
    """Raised inside a strategy; the dispatcher turns it into an empty CaptureResult."""

    def __init__(self, kind: CaptureError, message: str = ""):
        super().__init__(message or kind.value)
        self.kind = kind
        self.message = message or kind.value


class DisplayServer(str, Enum):
    WAYLAND = "wayland"
    X11 = "x11"
    WINDOWS = "windows"
    MACOS = "macos"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ScreenMetrics:
    """Raw numbers reported by the platform for the primary display."""
    logical_size: Tuple[int, int]
    geometry_size: Tuple[int, int]
    device_pixel_ratio: float


@dataclass(frozen=True)
class ScreenInfo:
    logical_size: Tuple[int, int]
    physical_size: Tuple[int, int]
    device_pixel_ratio: float
    native_size: Tuple[int, int]
    corrected: bool = False


@dataclass
class CaptureResult:
    image: Optional[Image.Image] = None
    device_pixel_ratio: float = 1.0
    error: Optional[CaptureError] = None
    diagnostic: str = ""
    screen_info: Optional[ScreenInfo] = None

    @classmethod
    def failed(cls, kind: CaptureError, diagnostic: str = "") -> "CaptureResult":
        return cls(image=None, error=kind, diagnostic=diagnostic or kind.value)

    @property
    def is_empty(self) -> bool:
        return self.image is None or self.image.width == 0 or self.image.height == 0

    def __bool__(self) -> bool:
        return not self.is_empty

    @property
    def size(self) -> Tuple[int, int]:
        if self.image is None:
            return 0, 0
        return self.image.size

    @property
    def logical_size(self) -> Tuple[int, int]:
        """Bitmap size in screen logical coordinates."""
        width, height = self.size
        return int(width / self.device_pixel_ratio), int(height / self.device_pixel_ratio)

    def crop_selection(self, selection: Tuple[int, int, int, int]) -> Optional[Image.Image]:
        """Crop a selection given in logical screen coordinates out of the bitmap."""
        if self.is_empty:
            return None
        box = map_selection_to_pixels(selection, self.device_pixel_ratio, self.image.size)
        if box is None:
            return None
        return self.image.crop(box)


class NegotiationState(str, Enum):
    IDLE = "Idle"
    TOKEN_ISSUED = "TokenIssued"
    REQUEST_SENT = "RequestSent"
    AWAITING_SIGNAL = "AwaitingSignal"
    COMPLETED = "Completed"
    USER_CANCELLED = "UserCancelled"
    ERROR = "Error"
    TIMED_OUT = "TimedOut"

    @property
    def is_terminal(self) -> bool:
        return self in (
            NegotiationState.COMPLETED,
            NegotiationState.USER_CANCELLED,
            NegotiationState.ERROR,
            NegotiationState.TIMED_OUT,
        )


@dataclass(frozen=True)
class PortalRequestToken:
    token: str
    object_path: str


@dataclass(frozen=True)
class PortalResponse:
    SUCCESS = 0
    USER_CANCELLED = 1

    code: int
    results: Dict[str, Any] = field(default_factory=dict)

    @property
    def uri(self) -> Optional[str]:
        value = self.results.get("uri")
        return str(value) if value else None
