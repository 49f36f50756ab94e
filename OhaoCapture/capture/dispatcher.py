from __future__ import annotations

from typing import Callable, Dict, Optional

from OhaoCapture.capture.contracts import CaptureError, CaptureFailure, CaptureResult, DisplayServer, ScreenInfo
from OhaoCapture.capture.screen_info import ResolutionNormalizer, ScreenProbe
from OhaoCapture.capture.strategies.base import CaptureStrategy
from OhaoCapture.capture.strategies.direct import DirectCaptureStrategy
from OhaoCapture.capture.strategies.portal import PortalCaptureStrategy
from OhaoCapture.util.config.configuration import CaptureConfig, is_linux, is_mac, is_wayland, is_windows
from OhaoCapture.util.logging_config import logger


def detect_display_server() -> DisplayServer:
    if is_windows():
        return DisplayServer.WINDOWS
    if is_mac():
        return DisplayServer.MACOS
    if is_linux():
        return DisplayServer.WAYLAND if is_wayland() else DisplayServer.X11
    return DisplayServer.UNKNOWN


class ScreenCapture:
    """
    Captures the primary display with whichever strategy the running display
    server allows.

    ``capture_screen()`` never raises. On failure it returns an empty
    CaptureResult and the reason is kept in ``last_error``/``error_message``.
    There is no retry and no fallback to the other strategy.
    """

    def __init__(self,
                 config: Optional[CaptureConfig] = None,
                 probe: Optional[ScreenProbe] = None,
                 strategies: Optional[Dict[DisplayServer, CaptureStrategy]] = None,
                 display_server_probe: Callable[[], DisplayServer] = detect_display_server,
                 on_completed: Optional[Callable[[CaptureResult], None]] = None,
                 on_failed: Optional[Callable[[str], None]] = None):
        self.config = config or CaptureConfig()
        self.normalizer = ResolutionNormalizer(probe, self.config.resolution)
        if strategies is None:
            direct = DirectCaptureStrategy(self.normalizer)
            strategies = {
                DisplayServer.X11: direct,
                DisplayServer.WINDOWS: direct,
                DisplayServer.MACOS: direct,
                DisplayServer.WAYLAND: PortalCaptureStrategy(self.normalizer, self.config.portal),
            }
        self.strategies = strategies
        self.display_server_probe = display_server_probe
        self.on_completed = on_completed
        self.on_failed = on_failed
        self.last_error: Optional[CaptureError] = None
        self.error_message = ""

    def select_strategy(self) -> Optional[CaptureStrategy]:
        server = self.display_server_probe()
        strategy = self.strategies.get(server)
        logger.debug(f"Display server: {server.value}, strategy: {getattr(strategy, 'name', None)}")
        return strategy

    def capture_screen(self) -> CaptureResult:
        logger.debug("Starting screen capture")
        strategy = self.select_strategy()
        if strategy is None:
            result = CaptureResult.failed(CaptureError.UNSUPPORTED_PLATFORM, "Unsupported platform")
        else:
            try:
                result = strategy.capture()
            except CaptureFailure as e:
                result = CaptureResult.failed(e.kind, e.message)
            except Exception as e:
                logger.exception(f"Unexpected error during {strategy.name} capture: {e}")
                result = CaptureResult.failed(CaptureError.IMAGE_DECODE_FAILURE, str(e))

        if result.is_empty and result.error is None:
            result = CaptureResult.failed(CaptureError.NO_PRIMARY_DISPLAY, "Capture returned an empty image")

        self.last_error = result.error
        self.error_message = result.diagnostic
        if result:
            logger.info(f"Screen captured: {result.size}, DPR {result.device_pixel_ratio:.2f}")
        elif result.error == CaptureError.PORTAL_USER_CANCELLED:
            logger.info(f"Screen capture cancelled: {result.diagnostic}")
        else:
            logger.warning(f"Screen capture failed ({result.error.value}): {result.diagnostic}")
        self._notify(result)
        return result

    def detect_screen_resolution(self) -> Optional[ScreenInfo]:
        return self.normalizer.detect()

    def _notify(self, result: CaptureResult):
        try:
            if result and self.on_completed:
                self.on_completed(result)
            elif not result and self.on_failed:
                self.on_failed(result.diagnostic)
        except Exception as e:
            logger.exception(f"Capture observer raised: {e}")
