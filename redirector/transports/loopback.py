from __future__ import annotations

import logging
import socket
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from threading import Lock, Thread
from typing import Any, Dict, Iterable, Optional
from urllib.parse import urlsplit

from ..config import config
from ..errors import ChannelOpenError, NoPortAvailableError, ValidatorError
from ..models import FailureKind, HttpCallbackRequest, HttpCallbackResponse
from ..rendering import render_page
from ..runtime.contracts import DeliverFn, Launcher, LoopbackOptions, Operation, RedirectOptions, ResponseBuilder
from ..runtime.resolution import RedirectFailure
from .launchers import SystemBrowserLauncher

logger = logging.getLogger(__name__)


class _ReusableThreadingHTTPServer(ThreadingHTTPServer):
    allow_reuse_address = True
    daemon_threads = True


class _ReusableThreadingHTTPServerV6(_ReusableThreadingHTTPServer):
    address_family = socket.AF_INET6


def default_callback_response(request: HttpCallbackRequest) -> HttpCallbackResponse:
    body = render_page(
        config.REDIRECT.LOOPBACK.SUCCESS_TEMPLATE,
        title="Redirect Complete",
        message="You can close this window and return to the application.",
    )
    return HttpCallbackResponse(body=body)


def _format_host(host: str) -> str:
    if ":" in host and not host.startswith("["):
        return f"[{host}]"
    return host


class LoopbackListener:
    """One operation's HTTP listener on a local-only address.

    Every request on ``callback_path`` is offered to the operation; the first
    accepted one gets the configured response and the operation's cleanup
    closes this listener. Everything else gets an empty 404.
    """

    def __init__(
        self,
        *,
        operation: Operation,
        deliver: DeliverFn,
        host: str,
        bind_address: str,
        callback_path: str,
        response_builder: Optional[ResponseBuilder] = None,
    ) -> None:
        self._operation = operation
        self._deliver = deliver
        self._host = host
        self._bind_address = bind_address
        self._callback_path = callback_path
        self._response_builder = response_builder or default_callback_response
        self._server: _ReusableThreadingHTTPServer | None = None
        self._thread: Thread | None = None
        self._bound_port: int | None = None
        self._closed = False
        self._lock = Lock()

    @property
    def port(self) -> int | None:
        return self._bound_port

    @property
    def endpoint(self) -> str:
        return f"http://{_format_host(self._host)}:{self._bound_port}{self._callback_path}"

    @property
    def closed(self) -> bool:
        return self._closed

    def bind(self, ports: Iterable[int]) -> int:
        """Bind the first free candidate port, in order."""
        candidates = list(ports)
        server_cls = _ReusableThreadingHTTPServerV6 if ":" in self._bind_address else _ReusableThreadingHTTPServer
        handler_cls = self._build_handler()
        last_error: OSError | None = None
        for port in candidates:
            try:
                server = server_cls((self._bind_address, port), handler_cls)
            except OSError as exc:
                logger.warning(
                    "Loopback listener unavailable on %s:%s: %s",
                    self._bind_address,
                    port,
                    exc,
                )
                last_error = exc
                continue
            with self._lock:
                self._server = server
                self._bound_port = int(server.server_port)
            return self._bound_port
        if candidates == [0]:
            raise ChannelOpenError(
                f"Could not bind loopback listener on {self._bind_address}: {last_error}",
                bind_address=self._bind_address,
            )
        raise NoPortAvailableError(
            f"No available port in {candidates[0]}-{candidates[-1]} on {self._bind_address}"
            if len(candidates) > 1
            else f"Port {candidates[0]} is not available on {self._bind_address}",
            bind_address=self._bind_address,
            ports=candidates,
        )

    def start(self) -> None:
        with self._lock:
            server = self._server
            if server is None or self._thread is not None or self._closed:
                return
            thread = Thread(
                target=self._serve,
                args=(server,),
                daemon=True,
                name=f"redirect-loopback-{self._operation.id}",
            )
            self._thread = thread
        thread.start()
        logger.info("Loopback listener for %s started at %s", self._operation.id, self.endpoint)

    def _serve(self, server: _ReusableThreadingHTTPServer) -> None:
        try:
            server.serve_forever(poll_interval=float(config.REDIRECT.LOOPBACK.POLL_INTERVAL_SEC))
        except Exception as exc:
            if self._closed:
                return
            logger.exception("Loopback listener for %s failed: %s", self._operation.id, exc)
            self._operation.sink.try_resolve(RedirectFailure(kind=FailureKind.OTHER, error=exc))

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            server = self._server
            thread = self._thread
            self._server = None
            self._thread = None
        if server is None:
            return
        try:
            if thread is not None:
                server.shutdown()
            server.server_close()
        finally:
            if thread is not None and thread.is_alive():
                thread.join(timeout=float(config.REDIRECT.LOOPBACK.THREAD_JOIN_TIMEOUT_SEC))
        logger.info("Loopback listener for %s closed", self._operation.id)

    def _build_handler(self) -> type[BaseHTTPRequestHandler]:
        owner = self

        class CallbackHandler(BaseHTTPRequestHandler):
            def _dispatch(self) -> None:
                self._drain_body()
                parsed = urlsplit(self.path)
                if parsed.path != owner._callback_path:
                    self._respond(HttpCallbackResponse(status_code=404, headers={}))
                    return
                candidate = f"http://{_format_host(owner._host)}:{owner._bound_port}{self.path}"
                request = HttpCallbackRequest(
                    uri=candidate,
                    method=self.command,
                    headers={key: value for key, value in self.headers.items()},
                )
                try:
                    accepted = owner._deliver(candidate)
                except ValidatorError:
                    self._respond(HttpCallbackResponse(status_code=500, headers={}))
                    return
                except Exception as exc:
                    logger.exception("Loopback callback handling failed for %s: %s", owner._operation.id, exc)
                    self._respond(HttpCallbackResponse(status_code=500, headers={}))
                    return
                if not accepted:
                    self._respond(HttpCallbackResponse(status_code=404, headers={}))
                    return
                try:
                    response = owner._response_builder(request)
                except Exception:
                    logger.exception("Loopback response builder failed for %s", owner._operation.id)
                    response = HttpCallbackResponse(status_code=500, headers={})
                self._respond(response)

            do_GET = _dispatch  # noqa: N815
            do_POST = _dispatch  # noqa: N815
            do_PUT = _dispatch  # noqa: N815
            do_PATCH = _dispatch  # noqa: N815
            do_DELETE = _dispatch  # noqa: N815
            do_OPTIONS = _dispatch  # noqa: N815
            do_HEAD = _dispatch  # noqa: N815

            def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
                return

            def _drain_body(self) -> None:
                length = self.headers.get("Content-Length")
                if not length:
                    return
                try:
                    remaining = int(length)
                except ValueError:
                    return
                if remaining > 0:
                    self.rfile.read(remaining)

            def _respond(self, response: HttpCallbackResponse) -> None:
                encoded = response.body.encode("utf-8")
                try:
                    self.send_response(response.status_code)
                    for name, value in response.headers.items():
                        if name.lower() == "content-length":
                            continue
                        self.send_header(name, value)
                    self.send_header("Content-Length", str(len(encoded)))
                    self.send_header("Connection", "close")
                    self.end_headers()
                    if self.command != "HEAD" and encoded:
                        self.wfile.write(encoded)
                except (BrokenPipeError, ConnectionResetError):
                    logger.debug("Loopback client for %s went away before the response", owner._operation.id)

        return CallbackHandler


class LoopbackTransport:
    """Return channel over a loopback HTTP listener, one listener per operation."""

    name = "loopback"

    def __init__(self, launcher: Optional[Launcher] = None) -> None:
        self._launcher = launcher or SystemBrowserLauncher()
        self._listeners: Dict[str, LoopbackListener] = {}
        self._lock = Lock()

    def attribute_for(self, options: RedirectOptions) -> Optional[str]:
        return None

    def open(self, operation: Operation, deliver: DeliverFn) -> LoopbackListener:
        opts: LoopbackOptions = operation.options.loopback
        host = opts.host or config.REDIRECT.LOOPBACK.HOST
        listener = LoopbackListener(
            operation=operation,
            deliver=deliver,
            host=host,
            bind_address=opts.bind_address or host,
            callback_path=opts.callback_path or config.REDIRECT.LOOPBACK.CALLBACK_PATH,
            response_builder=opts.response_builder,
        )
        ports = opts.port_range.ports() if opts.port_range is not None else [opts.port]
        port = listener.bind(ports)
        if opts.on_port_bound is not None:
            try:
                opts.on_port_bound(port)
            except Exception as exc:
                listener.close()
                raise ChannelOpenError(f"on_port_bound callback failed: {exc}", port=port) from exc
        with self._lock:
            self._listeners[operation.id] = listener
        listener.start()
        return listener

    def launch(self, operation: Operation, channel: LoopbackListener) -> None:
        opts = operation.options.loopback
        url = operation.url
        if opts.url_builder is not None and channel.port is not None:
            url = opts.url_builder(channel.port)
        open_browser = opts.open_browser
        if open_browser is None:
            open_browser = bool(config.REDIRECT.LOOPBACK.OPEN_BROWSER)
        if open_browser:
            self._launcher.launch(url)
        return None

    def close(self, channel: LoopbackListener) -> None:
        with self._lock:
            for operation_id, listener in list(self._listeners.items()):
                if listener is channel:
                    self._listeners.pop(operation_id, None)
        channel.close()

    def server_port(self, operation_id: str) -> Optional[int]:
        with self._lock:
            listener = self._listeners.get(operation_id)
        if listener is None or listener.closed:
            return None
        return listener.port
