from OhaoCapture.capture.contracts import (
    CaptureError,
    CaptureFailure,
    CaptureResult,
    DisplayServer,
    NegotiationState,
    PortalRequestToken,
    PortalResponse,
    ScreenInfo,
    ScreenMetrics,
)
from OhaoCapture.capture.dispatcher import ScreenCapture, detect_display_server
from OhaoCapture.capture.screen_info import ResolutionNormalizer, infer_device_pixel_ratio
from OhaoCapture.capture.selection import map_selection_to_pixels
