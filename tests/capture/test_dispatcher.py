from __future__ import annotations

from contextlib import contextmanager

import pytest
from PIL import Image

from OhaoCapture.capture import dispatcher
from OhaoCapture.capture.contracts import (
    CaptureError,
    CaptureFailure,
    CaptureResult,
    DisplayServer,
    ScreenMetrics,
)
from OhaoCapture.capture.dispatcher import ScreenCapture, detect_display_server
from OhaoCapture.capture.strategies.direct import DirectCaptureStrategy
from OhaoCapture.capture.strategies.portal import PortalCaptureStrategy


class _Probe:
    def __init__(self, logical=(1920, 1080), geometry=None, dpr=1.0):
        self.metrics = ScreenMetrics(logical_size=logical, geometry_size=geometry or logical, device_pixel_ratio=dpr)

    def primary_screen(self):
        return self.metrics


class _Strategy:
    def __init__(self, name, outcome):
        self.name = name
        self.outcome = outcome
        self.calls = 0

    def capture(self):
        self.calls += 1
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def _image_result(size=(100, 50), dpr=1.0):
    return CaptureResult(image=Image.new("RGB", size), device_pixel_ratio=dpr)


def test_wayland_selects_portal_strategy():
    direct = _Strategy("direct", _image_result())
    portal = _Strategy("portal", _image_result())
    capture = ScreenCapture(
        strategies={DisplayServer.X11: direct, DisplayServer.WAYLAND: portal},
        display_server_probe=lambda: DisplayServer.WAYLAND,
    )

    assert capture.capture_screen()
    assert portal.calls == 1
    assert direct.calls == 0


@pytest.mark.parametrize("server", [DisplayServer.X11, DisplayServer.WINDOWS, DisplayServer.MACOS])
def test_default_strategies_use_direct_capture_off_wayland(server):
    capture = ScreenCapture(probe=_Probe(), display_server_probe=lambda: server)
    assert isinstance(capture.select_strategy(), DirectCaptureStrategy)


def test_default_strategies_use_portal_on_wayland():
    capture = ScreenCapture(probe=_Probe(), display_server_probe=lambda: DisplayServer.WAYLAND)
    assert isinstance(capture.select_strategy(), PortalCaptureStrategy)


def test_failure_is_returned_as_empty_result_without_fallback():
    portal = _Strategy("portal", CaptureFailure(CaptureError.PORTAL_TIMEOUT, "No portal response within 10s"))
    direct = _Strategy("direct", _image_result())
    capture = ScreenCapture(
        strategies={DisplayServer.WAYLAND: portal, DisplayServer.X11: direct},
        display_server_probe=lambda: DisplayServer.WAYLAND,
    )

    result = capture.capture_screen()

    assert not result
    assert result.image is None
    assert result.error == CaptureError.PORTAL_TIMEOUT
    assert capture.last_error == CaptureError.PORTAL_TIMEOUT
    assert "10s" in capture.error_message
    assert direct.calls == 0


def test_unknown_platform_is_unsupported():
    capture = ScreenCapture(strategies={}, display_server_probe=lambda: DisplayServer.UNKNOWN)

    result = capture.capture_screen()

    assert not result
    assert result.error == CaptureError.UNSUPPORTED_PLATFORM


def test_unexpected_exception_never_escapes():
    capture = ScreenCapture(
        strategies={DisplayServer.X11: _Strategy("direct", RuntimeError("boom"))},
        display_server_probe=lambda: DisplayServer.X11,
    )

    result = capture.capture_screen()

    assert not result
    assert "boom" in result.diagnostic


def test_empty_image_from_strategy_is_reported_as_failure():
    capture = ScreenCapture(
        strategies={DisplayServer.X11: _Strategy("direct", CaptureResult())},
        display_server_probe=lambda: DisplayServer.X11,
    )

    result = capture.capture_screen()

    assert not result
    assert result.error == CaptureError.NO_PRIMARY_DISPLAY


def test_observers_receive_outcomes():
    completed, failed = [], []
    ok = _Strategy("direct", _image_result())
    capture = ScreenCapture(
        strategies={DisplayServer.X11: ok},
        display_server_probe=lambda: DisplayServer.X11,
        on_completed=completed.append,
        on_failed=failed.append,
    )

    capture.capture_screen()
    ok.outcome = CaptureFailure(CaptureError.NO_PRIMARY_DISPLAY, "No primary screen found")
    capture.capture_screen()

    assert len(completed) == 1 and completed[0]
    assert failed == ["No primary screen found"]


def test_observer_errors_do_not_change_result():
    def explode(_result):
        raise ValueError("observer bug")

    capture = ScreenCapture(
        strategies={DisplayServer.X11: _Strategy("direct", _image_result())},
        display_server_probe=lambda: DisplayServer.X11,
        on_completed=explode,
    )

    assert capture.capture_screen()


def test_detect_display_server(monkeypatch):
    monkeypatch.setattr(dispatcher, "is_windows", lambda: False)
    monkeypatch.setattr(dispatcher, "is_mac", lambda: False)
    monkeypatch.setattr(dispatcher, "is_linux", lambda: True)
    monkeypatch.setattr(dispatcher, "is_wayland", lambda: True)
    assert detect_display_server() == DisplayServer.WAYLAND

    monkeypatch.setattr(dispatcher, "is_wayland", lambda: False)
    assert detect_display_server() == DisplayServer.X11

    monkeypatch.setattr(dispatcher, "is_windows", lambda: True)
    assert detect_display_server() == DisplayServer.WINDOWS

    monkeypatch.setattr(dispatcher, "is_windows", lambda: False)
    monkeypatch.setattr(dispatcher, "is_linux", lambda: False)
    assert detect_display_server() == DisplayServer.UNKNOWN


def test_detect_screen_resolution_never_raises():
    class _NoDisplay:
        def primary_screen(self):
            raise RuntimeError("Cannot connect to display")

    capture = ScreenCapture(probe=_NoDisplay(), display_server_probe=lambda: DisplayServer.X11)

    assert capture.detect_screen_resolution() is None


def test_end_to_end_direct_capture_trusts_bitmap_over_reported_scale():
    probe = _Probe(logical=(1920, 1080), geometry=(3840, 2160), dpr=1.0)
    capture = ScreenCapture(probe=probe, display_server_probe=lambda: DisplayServer.X11)
    capture.strategies[DisplayServer.X11].grabber = lambda: Image.new("RGB", (3840, 2160))

    result = capture.capture_screen()
    info = capture.detect_screen_resolution()

    assert result.device_pixel_ratio == pytest.approx(2.0)
    assert result.logical_size == (1920, 1080)
    assert info.native_size == (3840, 2160)
    assert result.screen_info == info
    assert info.corrected is False


def test_end_to_end_portal_transport_failure_leaves_no_subscription():
    class _FailingBus:
        unique_name = ":1.7"

        def __init__(self):
            self.handlers = {}
            self.pending = []

        @contextmanager
        def negotiation_scope(self):
            yield

        def subscribe_response(self, object_path, handler):
            self.handlers[object_path] = handler
            return object_path

        def unsubscribe(self, subscription):
            del self.handlers[subscription]

        def call_screenshot(self, _parent, _options, _on_reply, on_error):
            self.pending.append(lambda: on_error("The name org.freedesktop.portal.Desktop was not provided"))

        def pump(self):
            while self.pending:
                self.pending.pop(0)()

    bus = _FailingBus()
    capture = ScreenCapture(probe=_Probe(), display_server_probe=lambda: DisplayServer.WAYLAND)
    capture.strategies[DisplayServer.WAYLAND].bus_factory = lambda _cfg: bus

    result = capture.capture_screen()

    assert not result
    assert result.error == CaptureError.PORTAL_UNAVAILABLE
    assert capture.last_error == CaptureError.PORTAL_UNAVAILABLE
    assert bus.handlers == {}
