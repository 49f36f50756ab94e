"""
OhaoCapture - screen capture for OCR.

Grabs the primary display on X11, Windows, macOS and sandboxed Wayland
sessions (through xdg-desktop-portal), works out the real device pixel ratio,
and prepares selected regions for text recognition.
"""

import threading
from typing import Optional

from OhaoCapture.capture import (
    CaptureError,
    CaptureResult,
    ScreenCapture,
    ScreenInfo,
    map_selection_to_pixels,
)
from OhaoCapture.ocr import preprocess_for_ocr
from OhaoCapture.util.config.configuration import CaptureConfig

__version__ = "1.0.0"

_default_capture: Optional[ScreenCapture] = None
_default_capture_lock = threading.Lock()


def get_screen_capture() -> ScreenCapture:
    global _default_capture
    with _default_capture_lock:
        if _default_capture is None:
            _default_capture = ScreenCapture()
        return _default_capture


def capture_screen() -> CaptureResult:
    return get_screen_capture().capture_screen()


def detect_screen_resolution() -> Optional[ScreenInfo]:
    return get_screen_capture().detect_screen_resolution()


__all__ = [
    'CaptureConfig',
    'CaptureError',
    'CaptureResult',
    'ScreenCapture',
    'ScreenInfo',
    'capture_screen',
    'detect_screen_resolution',
    'get_screen_capture',
    'map_selection_to_pixels',
    'preprocess_for_ocr',
]
