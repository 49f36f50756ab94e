import os
import tempfile
from sys import platform
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from dataclasses_json import dataclass_json

from OhaoCapture.util.logging_config import logger

PORTAL_BUS_NAME = "org.freedesktop.portal.Desktop"
PORTAL_OBJECT_PATH = "/org/freedesktop/portal/desktop"
PORTAL_SCREENSHOT_INTERFACE = "org.freedesktop.portal.Screenshot"
PORTAL_REQUEST_INTERFACE = "org.freedesktop.portal.Request"


def _default_temp_dirs() -> List[str]:
    dirs = [tempfile.gettempdir()]
    if "/tmp" not in dirs:
        dirs.append("/tmp")
    return dirs


@dataclass_json
@dataclass
class PortalConfig:
    timeout_seconds: float = 10.0
    bus_name: str = PORTAL_BUS_NAME
    object_path: str = PORTAL_OBJECT_PATH
    interface: str = PORTAL_SCREENSHOT_INTERFACE
    interactive: bool = False
    temp_dirs: List[str] = field(default_factory=_default_temp_dirs)

    def __post_init__(self):
        if self.timeout_seconds <= 0:
            logger.warning(f"Portal timeout {self.timeout_seconds}s is not positive, using 10s")
            self.timeout_seconds = 10.0


@dataclass_json
@dataclass
class KnownPanel:
    """A logical size band a compositor is known to report for a given native panel."""
    min_width: int
    max_width: int
    min_height: int
    max_height: int
    native_width: int
    native_height: int

    def matches(self, width: int, height: int) -> bool:
        return self.min_width <= width <= self.max_width and self.min_height <= height <= self.max_height

    @property
    def native_size(self) -> Tuple[int, int]:
        return self.native_width, self.native_height


def _default_known_panels() -> List[KnownPanel]:
    # 2560x1600 panels reported at roughly half size with a bogus scale factor
    return [KnownPanel(1700, 1800, 1000, 1100, 2560, 1600)]


@dataclass_json
@dataclass
class ResolutionConfig:
    enable_heuristic: bool = True
    max_plausible_width: int = 3000
    max_plausible_height: int = 2000
    distrust_scale_above: float = 1.5
    small_logical_width: int = 2000
    fallback_scale: float = 1.5
    known_panels: List[KnownPanel] = field(default_factory=_default_known_panels)
    override_native_width: Optional[int] = None
    override_native_height: Optional[int] = None

    @property
    def override_native_size(self) -> Optional[Tuple[int, int]]:
        if self.override_native_width and self.override_native_height:
            return self.override_native_width, self.override_native_height
        return None


@dataclass_json
@dataclass
class PreprocessConfig:
    enabled: bool = True
    contrast: float = 1.3
    brightness: float = 10.0
    sharpen_center: float = 2.2
    sharpen_edge: float = -0.2
    sharpen_corner: float = -0.1


@dataclass_json
@dataclass
class CaptureConfig:
    portal: PortalConfig = field(default_factory=PortalConfig)
    resolution: ResolutionConfig = field(default_factory=ResolutionConfig)
    preprocess: PreprocessConfig = field(default_factory=PreprocessConfig)


def is_linux():
    return platform.startswith('linux')


def is_windows():
    return platform == 'win32'


def is_mac():
    return platform == 'darwin'


def is_wayland():
    return os.environ.get('XDG_SESSION_TYPE', '').lower() == 'wayland' or bool(os.environ.get('WAYLAND_DISPLAY'))
