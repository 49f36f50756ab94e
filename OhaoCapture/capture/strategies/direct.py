from __future__ import annotations

from typing import Callable, Optional

import mss
import mss.exception
from PIL import Image

from OhaoCapture.capture.contracts import CaptureError, CaptureFailure, CaptureResult
from OhaoCapture.capture.screen_info import ResolutionNormalizer
from OhaoCapture.util.config.configuration import is_windows
from OhaoCapture.util.logging_config import logger


def set_dpi_awareness():
    if not is_windows():
        return
    import ctypes
    per_monitor_awareness = 2
    ctypes.windll.shcore.SetProcessDpiAwareness(per_monitor_awareness)


def grab_primary_monitor() -> Optional[Image.Image]:
    set_dpi_awareness()
    with mss.mss() as sct:
        monitors = sct.monitors[1:]
        if not monitors:
            return None
        sct_img = sct.grab(monitors[0])
        return Image.frombytes('RGB', sct_img.size, sct_img.bgra, 'raw', 'BGRX')


class DirectCaptureStrategy:
    """Synchronous framebuffer grab for X11, Windows and macOS."""

    name = "direct"

    def __init__(self, normalizer: ResolutionNormalizer, grabber: Callable[[], Optional[Image.Image]] = grab_primary_monitor):
        self.normalizer = normalizer
        self.grabber = grabber

    def capture(self) -> CaptureResult:
        metrics = self.normalizer.read_metrics()
        if metrics is None:
            raise CaptureFailure(CaptureError.NO_PRIMARY_DISPLAY, "No primary screen found")

        try:
            image = self.grabber()
        except mss.exception.ScreenShotError as e:
            raise CaptureFailure(CaptureError.NO_PRIMARY_DISPLAY, f"Screen grab failed: {e}") from e

        if image is None or image.width == 0 or image.height == 0:
            raise CaptureFailure(CaptureError.NO_PRIMARY_DISPLAY, "Screen grab returned no image")

        logger.debug(f"Direct capture successful, size: {image.size}")
        return self.normalizer.tag(image, metrics)
