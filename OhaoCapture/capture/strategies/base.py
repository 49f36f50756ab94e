from __future__ import annotations

from typing import Protocol

from OhaoCapture.capture.contracts import CaptureResult


class CaptureStrategy(Protocol):
    name: str

    def capture(self) -> CaptureResult:
        """Grab the primary display, raising CaptureFailure when that is not possible."""
        ...
