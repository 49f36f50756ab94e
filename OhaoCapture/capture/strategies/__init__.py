from OhaoCapture.capture.strategies.base import CaptureStrategy
from OhaoCapture.capture.strategies.direct import DirectCaptureStrategy
from OhaoCapture.capture.strategies.portal import PortalCaptureStrategy

__all__ = ["CaptureStrategy", "DirectCaptureStrategy", "PortalCaptureStrategy"]
