"""
Screen resolution detection and device pixel ratio handling.

Windowing systems disagree about what "screen size" means once scaling is
involved, and some compositors report a scale factor that does not match the
panel at all. The helpers here read what the platform claims, correct the
obviously wrong cases, and tag captured bitmaps with the ratio that actually
maps logical selection coordinates onto bitmap pixels.
"""

from __future__ import annotations

from typing import Optional, Protocol, Tuple

import mss
import mss.exception
from PIL import Image

from OhaoCapture.capture.contracts import CaptureResult, ScreenInfo, ScreenMetrics
from OhaoCapture.util.config.configuration import ResolutionConfig
from OhaoCapture.util.logging_config import logger


class ScreenProbe(Protocol):
    def primary_screen(self) -> Optional[ScreenMetrics]:
        ...


class MssScreenProbe:
    """Reads the primary monitor from mss. mss has no notion of scaling, so DPR is 1.0."""

    def primary_screen(self) -> Optional[ScreenMetrics]:
        try:
            with mss.mss() as sct:
                monitors = sct.monitors[1:]
        except mss.exception.ScreenShotError as e:
            # No X display, e.g. a Wayland session without XWayland.
            logger.warning(f"Cannot read monitors from mss: {e}")
            return None
        if not monitors:
            return None
        monitor = monitors[0]
        size = (monitor["width"], monitor["height"])
        return ScreenMetrics(logical_size=size, geometry_size=size, device_pixel_ratio=1.0)


class QtScreenProbe:
    """
    Reads the primary screen from a running Qt application.

    The caller owns the QGuiApplication; when none exists the numbers come from
    mss instead.
    """

    def __init__(self, fallback: Optional[ScreenProbe] = None):
        self.fallback = fallback or MssScreenProbe()

    def primary_screen(self) -> Optional[ScreenMetrics]:
        from PyQt6.QtGui import QGuiApplication

        if QGuiApplication.instance() is None:
            logger.debug("No Qt application running, reading screen metrics from mss")
            return self.fallback.primary_screen()

        screen = QGuiApplication.primaryScreen()
        if screen is None:
            return None
        size = screen.size()
        geometry = screen.geometry()
        return ScreenMetrics(
            logical_size=(size.width(), size.height()),
            geometry_size=(geometry.width(), geometry.height()),
            device_pixel_ratio=float(screen.devicePixelRatio()),
        )


def infer_device_pixel_ratio(image_size: Tuple[int, int], logical_size: Tuple[int, int]) -> float:
    """
    Average of the horizontal and vertical image/screen ratios, never below 1.0.

    The grabbed bitmap's own dimensions are trusted over the platform's scale factor.
    """
    image_width, image_height = image_size
    logical_width, logical_height = logical_size
    if logical_width <= 0 or logical_height <= 0:
        return 1.0
    ratio = (image_width / logical_width + image_height / logical_height) / 2.0
    return max(1.0, ratio)


class ResolutionNormalizer:
    def __init__(self, probe: Optional[ScreenProbe] = None, config: Optional[ResolutionConfig] = None):
        self.probe = probe or QtScreenProbe()
        self.config = config or ResolutionConfig()

    def read_metrics(self) -> Optional[ScreenMetrics]:
        """Primary screen metrics from the probe, or None when they cannot be read."""
        try:
            return self.probe.primary_screen()
        except Exception as e:
            logger.warning(f"Failed to read primary screen metrics: {e}")
            return None

    def detect(self) -> Optional[ScreenInfo]:
        """
        Build a ScreenInfo for the primary display, or None when there is none.

        The native size correction is best effort. Set ``enable_heuristic`` to
        False to trust the platform, or ``override_native_width/height`` to pin
        the answer.
        """
        metrics = self.read_metrics()
        if metrics is None:
            logger.warning("No primary screen available for resolution detection")
            return None
        return self.describe(metrics)

    def describe(self, metrics: ScreenMetrics) -> ScreenInfo:
        dpr = metrics.device_pixel_ratio or 1.0
        physical_width, physical_height = metrics.geometry_size
        calculated = (round(physical_width * dpr), round(physical_height * dpr))
        native, corrected = self._correct_native_size(metrics, calculated)

        info = ScreenInfo(
            logical_size=metrics.logical_size,
            physical_size=metrics.geometry_size,
            device_pixel_ratio=dpr,
            native_size=native,
            corrected=corrected,
        )
        logger.debug(f"Screen info: logical={info.logical_size} physical={info.physical_size} "
                     f"dpr={info.device_pixel_ratio} native={info.native_size} corrected={corrected}")
        return info

    def _correct_native_size(self, metrics: ScreenMetrics, calculated: Tuple[int, int]) -> Tuple[Tuple[int, int], bool]:
        cfg = self.config
        if cfg.override_native_size:
            return cfg.override_native_size, calculated != cfg.override_native_size
        if not cfg.enable_heuristic:
            return calculated, False

        logical_width, logical_height = metrics.logical_size
        for panel in cfg.known_panels:
            if panel.matches(logical_width, logical_height):
                if calculated != panel.native_size:
                    logger.info(f"Logical size {metrics.logical_size} matches known panel, "
                                f"using native {panel.native_size} instead of {calculated}")
                return panel.native_size, calculated != panel.native_size

        dpr = metrics.device_pixel_ratio
        # A reported scale of 1.0 scales nothing, so there is nothing to distrust.
        if dpr <= 1.0:
            return calculated, False

        implausible = calculated[0] > cfg.max_plausible_width or calculated[1] > cfg.max_plausible_height
        suspicious_scale = dpr > cfg.distrust_scale_above and logical_width < cfg.small_logical_width
        if not (implausible or suspicious_scale):
            return calculated, False

        physical_width, physical_height = metrics.geometry_size
        native = (round(physical_width * cfg.fallback_scale), round(physical_height * cfg.fallback_scale))
        logger.info(f"Distrusting reported scale factor {dpr}, native {calculated} -> {native}")
        return native, True

    def tag(self, image: Image.Image, metrics: Optional[ScreenMetrics] = None) -> CaptureResult:
        """
        Wrap a captured bitmap in a CaptureResult carrying its inferred DPR and
        the ScreenInfo it was reconciled against.

        ``metrics`` defaults to the probe's current primary screen. Without a
        screen the bitmap is taken as unscaled.
        """
        if metrics is None:
            metrics = self.read_metrics()
        if metrics is None:
            return CaptureResult(image=image, device_pixel_ratio=1.0)

        info = self.describe(metrics)
        dpr = infer_device_pixel_ratio(image.size, metrics.logical_size)
        logger.debug(f"Captured {image.size} over logical {metrics.logical_size}, inferred DPR {dpr:.3f}")
        if image.size != info.native_size:
            logger.debug(f"Captured size {image.size} differs from native {info.native_size}, "
                         f"selection mapping follows the bitmap")
        return CaptureResult(image=image, device_pixel_ratio=dpr, screen_info=info)
