"""
Session bus transport for the xdg-desktop-portal Screenshot interface.

The portal answers a Screenshot call twice: immediately with the path of a
pending Request object, and later with a Response signal emitted on that path.
PortalBus hides the D-Bus binding behind the handful of operations the
negotiation needs, so the negotiation itself can be driven by a fake bus.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Optional, Protocol

from OhaoCapture.util.config.configuration import PORTAL_REQUEST_INTERFACE, PortalConfig
from OhaoCapture.util.logging_config import logger

ResponseHandler = Callable[[int, Dict[str, Any]], None]


class PortalBus(Protocol):
    @property
    def unique_name(self) -> str:
        ...

    def negotiation_scope(self) -> Iterator[None]:
        """Context manager bracketing one negotiation on the calling thread."""
        ...

    def subscribe_response(self, object_path: str, handler: ResponseHandler) -> Any:
        ...

    def unsubscribe(self, subscription: Any) -> None:
        ...

    def call_screenshot(self, parent_window: str, options: Dict[str, Any],
                        on_reply: Callable[[str], None], on_error: Callable[[str], None]) -> None:
        ...

    def pump(self) -> None:
        """Dispatch whatever deliveries are pending, without blocking."""
        ...


class GioPortalBus:
    """PortalBus on top of Gio.DBusConnection (PyGObject)."""

    def __init__(self, config: Optional[PortalConfig] = None):
        from gi.repository import Gio, GLib

        self._Gio = Gio
        self._GLib = GLib
        self.config = config or PortalConfig()
        self._connection = Gio.bus_get_sync(Gio.BusType.SESSION, None)
        self._context = None

    @property
    def unique_name(self) -> str:
        return self._connection.get_unique_name() or ""

    @contextmanager
    def negotiation_scope(self):
        # Signal and reply callbacks are dispatched on the thread-default
        # context that was current when they were registered.
        context = self._GLib.MainContext.new()
        context.push_thread_default()
        self._context = context
        try:
            yield
        finally:
            # Drain anything already queued so no callback lingers in the context.
            while context.iteration(False):
                pass
            context.pop_thread_default()
            self._context = None

    def subscribe_response(self, object_path: str, handler: ResponseHandler) -> int:
        def on_signal(_connection, _sender, _path, _interface, _signal, parameters):
            response, results = parameters.unpack()
            handler(int(response), dict(results))

        return self._connection.signal_subscribe(
            self.config.bus_name,
            PORTAL_REQUEST_INTERFACE,
            "Response",
            object_path,
            None,
            self._Gio.DBusSignalFlags.NONE,
            on_signal,
        )

    def unsubscribe(self, subscription: int) -> None:
        self._connection.signal_unsubscribe(subscription)

    def call_screenshot(self, parent_window: str, options: Dict[str, Any],
                        on_reply: Callable[[str], None], on_error: Callable[[str], None]) -> None:
        GLib = self._GLib
        variant_options = {key: self._to_variant(value) for key, value in options.items()}
        parameters = GLib.Variant("(sa{sv})", (parent_window, variant_options))

        def on_finished(connection, result):
            try:
                reply = connection.call_finish(result)
            except GLib.Error as e:
                on_error(e.message)
                return
            on_reply(reply.unpack()[0])

        self._connection.call(
            self.config.bus_name,
            self.config.object_path,
            self.config.interface,
            "Screenshot",
            parameters,
            GLib.VariantType.new("(o)"),
            self._Gio.DBusCallFlags.NONE,
            -1,
            None,
            on_finished,
        )

    def pump(self) -> None:
        if self._context is None:
            return
        while self._context.iteration(False):
            pass

    def _to_variant(self, value: Any):
        GLib = self._GLib
        if isinstance(value, bool):
            return GLib.Variant("b", value)
        if isinstance(value, int):
            return GLib.Variant("u", value)
        return GLib.Variant("s", str(value))


def open_session_bus(config: Optional[PortalConfig] = None) -> GioPortalBus:
    logger.debug("Connecting to the session bus for the screenshot portal")
    return GioPortalBus(config)
