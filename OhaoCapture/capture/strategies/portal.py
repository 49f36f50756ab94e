"""
Screenshot capture through xdg-desktop-portal.

Sandboxed and Wayland sessions cannot read the framebuffer directly. Instead
the desktop portal takes the screenshot, writes it to a file and tells us the
URI in a Response signal emitted on a request path we choose up front through
the handle token.

Each call runs one PortalNegotiation:

    Idle -> TokenIssued -> RequestSent -> AwaitingSignal
         -> Completed | UserCancelled | Error | TimedOut

The Response subscription is registered before the method call goes out, and
the wait is bounded by PortalConfig.timeout_seconds. Whatever the outcome, the
subscription is removed before capture() returns; a Response that arrives
afterwards has nowhere to go.
"""

from __future__ import annotations

import threading
import time
import uuid
from concurrent import futures
from pathlib import Path
from typing import Callable, Optional, Union
from urllib.parse import urlparse
from urllib.request import url2pathname

from PIL import Image, UnidentifiedImageError

from OhaoCapture.capture.contracts import (
    CaptureError,
    CaptureFailure,
    CaptureResult,
    NegotiationState,
    PortalRequestToken,
    PortalResponse,
)
from OhaoCapture.capture.portal_bus import PortalBus, open_session_bus
from OhaoCapture.capture.screen_info import ResolutionNormalizer
from OhaoCapture.util.config.configuration import PORTAL_OBJECT_PATH, PortalConfig
from OhaoCapture.util.logging_config import logger

# Upper bound on how long a single wait on the outcome lasts between bus pumps.
WAIT_SLICE_SECONDS = 0.02


def sender_component(unique_name: str) -> str:
    return unique_name.lstrip(":").replace(".", "_")


def new_request_token(unique_name: str, base_path: str = PORTAL_OBJECT_PATH) -> PortalRequestToken:
    token = f"ohao_{uuid.uuid4().hex}"
    object_path = f"{base_path}/request/{sender_component(unique_name)}/{token}"
    return PortalRequestToken(token=token, object_path=object_path)


def uri_to_path(uri: str) -> Path:
    parsed = urlparse(uri)
    if parsed.scheme == "file":
        return Path(url2pathname(parsed.path))
    return Path(uri)


Outcome = Union[PortalResponse, CaptureFailure]


class PortalNegotiation:
    """
    One screenshot request in flight.

    The outcome is delivered through a one-shot future. The first delivery wins;
    anything after that, or after close(), is dropped.
    """

    def __init__(self, token: PortalRequestToken):
        self.token = token
        self.state = NegotiationState.TOKEN_ISSUED
        self.subscription = None
        self.future: futures.Future = futures.Future()
        self._lock = threading.Lock()
        self._closed = False

    def _deliver(self, outcome: Outcome) -> bool:
        with self._lock:
            if self._closed or self.future.done():
                return False
            self.future.set_result(outcome)
            return True

    def on_response(self, code: int, results: dict):
        if not self._deliver(PortalResponse(code=int(code), results=dict(results or {}))):
            logger.debug(f"Ignoring portal response for finished request {self.token.token}")
            return
        logger.debug(f"Portal response received, code: {code}")

    def on_reply(self, handle: str):
        if handle and handle != self.token.object_path:
            # Portals older than 0.9 do not honour handle_token.
            logger.warning(f"Portal returned request path {handle}, expected {self.token.object_path}")
        else:
            logger.debug("Portal call succeeded, waiting for response")

    def on_call_error(self, message: str):
        if not self._deliver(CaptureFailure(CaptureError.PORTAL_UNAVAILABLE, f"DBus call error: {message}")):
            logger.debug(f"Ignoring late call error for request {self.token.token}: {message}")

    def close(self):
        with self._lock:
            self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed


class PortalCaptureStrategy:
    name = "portal"

    def __init__(self, normalizer: ResolutionNormalizer, config: Optional[PortalConfig] = None,
                 bus_factory: Callable[[PortalConfig], PortalBus] = open_session_bus):
        self.normalizer = normalizer
        self.config = config or PortalConfig()
        self.bus_factory = bus_factory
        self._bus: Optional[PortalBus] = None
        self._lock = threading.Lock()
        self.last_state = NegotiationState.IDLE
        self.last_token: Optional[PortalRequestToken] = None

    def _get_bus(self) -> PortalBus:
        if self._bus is None:
            try:
                self._bus = self.bus_factory(self.config)
            except ImportError as e:
                raise CaptureFailure(CaptureError.PORTAL_UNAVAILABLE, f"PyGObject is not installed: {e}") from e
            except Exception as e:
                raise CaptureFailure(CaptureError.PORTAL_UNAVAILABLE, f"Cannot connect to session bus: {e}") from e
        return self._bus

    def capture(self) -> CaptureResult:
        # One negotiation at a time; a second caller waits here.
        with self._lock:
            bus = self._get_bus()
            negotiation = PortalNegotiation(new_request_token(bus.unique_name, self.config.object_path))
            self.last_token = negotiation.token
            logger.debug(f"Request object path: {negotiation.token.object_path}")
            try:
                with bus.negotiation_scope():
                    outcome = self._negotiate(bus, negotiation)
                return self._finish(negotiation, outcome)
            finally:
                negotiation.close()
                if not negotiation.state.is_terminal:
                    negotiation.state = NegotiationState.ERROR
                self.last_state = negotiation.state

    def _negotiate(self, bus: PortalBus, negotiation: PortalNegotiation) -> Optional[Outcome]:
        try:
            negotiation.subscription = bus.subscribe_response(negotiation.token.object_path, negotiation.on_response)
        except Exception as e:
            return CaptureFailure(CaptureError.PORTAL_UNAVAILABLE, f"Cannot subscribe to portal response: {e}")
        negotiation.state = NegotiationState.REQUEST_SENT
        try:
            options = {"handle_token": negotiation.token.token, "interactive": self.config.interactive}
            logger.debug("Calling Screenshot portal")
            try:
                bus.call_screenshot("", options, negotiation.on_reply, negotiation.on_call_error)
            except Exception as e:
                return CaptureFailure(CaptureError.PORTAL_UNAVAILABLE, f"DBus call error: {e}")

            negotiation.state = NegotiationState.AWAITING_SIGNAL
            return self._wait(bus, negotiation, time.monotonic() + self.config.timeout_seconds)
        finally:
            bus.unsubscribe(negotiation.subscription)
            negotiation.subscription = None

    def _wait(self, bus: PortalBus, negotiation: PortalNegotiation, deadline: float) -> Optional[Outcome]:
        while True:
            bus.pump()
            if negotiation.future.done():
                return negotiation.future.result()
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            try:
                return negotiation.future.result(timeout=min(remaining, WAIT_SLICE_SECONDS))
            except futures.TimeoutError:
                continue

    def _finish(self, negotiation: PortalNegotiation, outcome: Optional[Outcome]) -> CaptureResult:
        if outcome is None:
            negotiation.state = NegotiationState.TIMED_OUT
            raise CaptureFailure(CaptureError.PORTAL_TIMEOUT,
                                 f"No portal response within {self.config.timeout_seconds:g}s")

        if isinstance(outcome, CaptureFailure):
            negotiation.state = NegotiationState.ERROR
            raise outcome

        if outcome.code == PortalResponse.USER_CANCELLED:
            negotiation.state = NegotiationState.USER_CANCELLED
            raise CaptureFailure(CaptureError.PORTAL_USER_CANCELLED, "User cancelled screenshot")

        negotiation.state = NegotiationState.ERROR
        if outcome.code != PortalResponse.SUCCESS:
            raise CaptureFailure(CaptureError.PORTAL_ERROR, f"Portal error code: {outcome.code}")
        if not outcome.uri:
            raise CaptureFailure(CaptureError.PORTAL_MALFORMED_RESPONSE, "No URI in portal response")

        result = self.normalizer.tag(self.load_screenshot(outcome.uri))
        negotiation.state = NegotiationState.COMPLETED
        return result

    def load_screenshot(self, uri: str) -> Image.Image:
        path = uri_to_path(uri)
        logger.debug(f"Loading screenshot from: {path}")
        try:
            with Image.open(path) as img:
                img.load()
                image = img.copy()
        except (FileNotFoundError, UnidentifiedImageError, OSError) as e:
            raise CaptureFailure(CaptureError.IMAGE_DECODE_FAILURE, f"Failed to load screenshot from {path}: {e}") from e
        finally:
            self._remove_temp_file(path)
        logger.debug(f"Successfully loaded screenshot, size: {image.size}")
        return image

    def _remove_temp_file(self, path: Path):
        try:
            resolved = path.resolve()
        except OSError:
            return
        for temp_dir in self.config.temp_dirs:
            try:
                if resolved.is_relative_to(Path(temp_dir).resolve()):
                    resolved.unlink(missing_ok=True)
                    logger.debug(f"Removed temporary screenshot {resolved}")
                    return
            except OSError as e:
                logger.warning(f"Could not remove temporary screenshot {resolved}: {e}")
                return
