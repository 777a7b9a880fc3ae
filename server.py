"""Static video server entry point and connection lifecycle orchestration."""

from __future__ import annotations

import argparse
import json
import logging
import os
import socket
import sys
import time

from config import (
    ASSETS_ROOT,
    ENABLE_SENDFILE,
    HOST,
    KEEPALIVE_TIMEOUT_SECS,
    LOG_FORMAT,
    LOG_LEVEL,
    MAX_KEEPALIVE_REQUESTS,
    PORT,
    REQUEST_QUEUE_SIZE,
    SOCKET_TIMEOUT_SECS,
    WORKER_COUNT,
)
from errors import ConfigurationError
from handlers.video_handlers import VideoIndexHandler
from path_resolver import load_assets_root
from request import HTTPRequest, HTTPRequestParseError
from response import REASON_PHRASES, HTTPResponse
from router import Router
from socket_handler import (
    HeaderTooLargeError,
    HTTPReadError,
    MalformedRequestError,
    SocketTimeoutError,
    TruncatedBodyError,
    read_http_request_message,
    write_http_response_message,
)
from thread_pool import ThreadPool

logger = logging.getLogger(__name__)

READ_ERROR_STATUS: tuple[tuple[type[HTTPReadError], int], ...] = (
    (HeaderTooLargeError, 431),
    (SocketTimeoutError, 408),
    (MalformedRequestError, 400),
)
SERVED_METHODS = ("GET", "HEAD")


class HTTPServer:
    def __init__(
        self,
        assets_root: str | os.PathLike[str] = ASSETS_ROOT,
        host: str = HOST,
        port: int = PORT,
        router: Router | None = None,
        worker_count: int = WORKER_COUNT,
        request_queue_size: int = REQUEST_QUEUE_SIZE,
        *,
        videos_only: bool = False,
        keepalive_timeout_secs: float = KEEPALIVE_TIMEOUT_SECS,
        socket_timeout_secs: float = SOCKET_TIMEOUT_SECS,
        log_format: str = LOG_FORMAT,
        use_sendfile: bool = ENABLE_SENDFILE,
        drain_timeout_secs: float = 5.0,
    ) -> None:
        self.assets_root = load_assets_root(assets_root)
        self.host = host
        self.port = port
        self.videos_only = videos_only
        self.router = router or self._build_default_router()
        self.worker_count = worker_count
        self.request_queue_size = request_queue_size
        self.keepalive_timeout_secs = keepalive_timeout_secs
        self.socket_timeout_secs = socket_timeout_secs
        self.log_format = log_format
        self.use_sendfile = use_sendfile
        self.drain_timeout_secs = drain_timeout_secs

        self._server_socket: socket.socket | None = None
        self._pool: ThreadPool | None = None
        self._running = False

    def _build_default_router(self) -> Router:
        router = Router()
        router.add_route(
            "GET",
            "/",
            VideoIndexHandler(assets_root=self.assets_root, videos_only=self.videos_only),
        )
        return router

    def start(self) -> None:
        """Bind, then accept clients until :meth:`stop` is called."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server_socket:
            self._server_socket = server_socket
            server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            server_socket.bind((self.host, self.port))
            server_socket.listen(128)
            server_socket.settimeout(0.2)
            self._pool = ThreadPool(
                worker_count=self.worker_count,
                queue_size=self.request_queue_size,
                handler=self._handle_client,
            )
            self._pool.start()
            self.port = server_socket.getsockname()[1]
            logger.info(
                "Serving %s on http://%s:%s with %d workers",
                self.assets_root,
                self.host,
                self.port,
                self.worker_count,
            )

            self._running = True
            try:
                while self._running:
                    try:
                        client_socket, address = server_socket.accept()
                    except socket.timeout:
                        continue
                    except OSError:
                        break

                    if self._pool is None or not self._pool.submit(client_socket, address):
                        self._send_queue_full_response(client_socket, address)
            finally:
                pool, self._pool = self._pool, None
                if pool is not None:
                    pool.shutdown(graceful=True, timeout=self.drain_timeout_secs)

    def stop(self, *, graceful: bool = False) -> None:
        self._running = False
        if self._server_socket is not None:
            self._server_socket.close()
            self._server_socket = None
        pool, self._pool = self._pool, None
        if pool is not None:
            pool.shutdown(graceful=graceful, timeout=self.drain_timeout_secs)

    def _send_queue_full_response(
        self,
        client_socket: socket.socket,
        address: tuple[str, int],
    ) -> None:
        # Runs on the accept thread, so a client that is not reading must not block it.
        with client_socket:
            client_socket.setblocking(False)
            self._send_error_response(client_socket, address, 503, time.perf_counter())

    def _send_error_response(
        self,
        client_socket: socket.socket,
        address: tuple[str, int],
        status_code: int,
        started_at: float,
    ) -> None:
        response = HTTPResponse(
            status_code=status_code,
            body=REASON_PHRASES.get(status_code, "Bad Request"),
            should_close=True,
        )
        try:
            bytes_sent = write_http_response_message(client_socket, response)
        except OSError as exc:
            logger.debug("Could not deliver %s to %s: %s", status_code, address[0], exc)
            return
        self._log_access(
            address=address,
            method="-",
            path="-",
            status_code=status_code,
            bytes_out=bytes_sent,
            started_at=started_at,
            connection_reused=False,
        )

    def _handle_client(self, client_socket: socket.socket, address: tuple[str, int]) -> None:
        with client_socket:
            request_count = 0
            carry = b""
            while request_count < MAX_KEEPALIVE_REQUESTS:
                # Idle keep-alive connections get the shorter timeout.
                if request_count and not carry:
                    client_socket.settimeout(self.keepalive_timeout_secs)
                else:
                    client_socket.settimeout(self.socket_timeout_secs)
                started_at = time.perf_counter()

                try:
                    raw_request, carry = read_http_request_message(client_socket, carry)
                except SocketTimeoutError:
                    if request_count:
                        return
                    self._send_error_response(client_socket, address, 408, started_at)
                    return
                except HTTPReadError as exc:
                    self._send_error_response(
                        client_socket,
                        address,
                        _read_error_status(exc),
                        started_at,
                    )
                    return
                except OSError:
                    return

                if not raw_request:
                    return

                client_socket.settimeout(self.socket_timeout_secs)
                try:
                    request = HTTPRequest.from_bytes(raw_request)
                except HTTPRequestParseError as exc:
                    self._send_error_response(client_socket, address, exc.status_code, started_at)
                    return

                request_count += 1
                response = self._dispatch(request)
                should_close = (
                    (not request.keep_alive)
                    or request_count >= MAX_KEEPALIVE_REQUESTS
                )
                if should_close:
                    response.headers.setdefault("Connection", "close")
                else:
                    response.headers.setdefault("Connection", "keep-alive")
                    response.headers.setdefault(
                        "Keep-Alive",
                        (
                            f"timeout={int(self.keepalive_timeout_secs)}, "
                            f"max={MAX_KEEPALIVE_REQUESTS - request_count}"
                        ),
                    )

                try:
                    bytes_sent = write_http_response_message(
                        client_socket,
                        response,
                        use_sendfile=self.use_sendfile,
                    )
                except (OSError, TruncatedBodyError) as exc:
                    logger.debug(
                        "Aborted %s %s for %s: %s",
                        request.method,
                        request.path,
                        address[0],
                        exc,
                    )
                    return

                self._log_access(
                    address=address,
                    method=request.method,
                    path=request.path,
                    status_code=response.status_code,
                    bytes_out=bytes_sent,
                    started_at=started_at,
                    connection_reused=request_count > 1,
                )
                if should_close:
                    return

    def _dispatch(self, request: HTTPRequest) -> HTTPResponse:
        if request.method not in SERVED_METHODS:
            allowed = self.router.allowed_methods(request.path) or list(SERVED_METHODS)
            return HTTPResponse(
                status_code=405,
                headers={"Allow": ", ".join(allowed)},
                body="Method Not Allowed",
            )

        handler = self.router.resolve("GET", request.path)
        if handler is None:
            response = HTTPResponse(status_code=404, body="Not Found")
        else:
            try:
                response = handler(request)
            except Exception:
                logger.exception("Unhandled error while serving %s", request.path)
                response = HTTPResponse(status_code=500, body="Internal Server Error")

        if request.method == "HEAD":
            return self._as_head_response(response)
        return response

    def _as_head_response(self, get_response: HTTPResponse) -> HTTPResponse:
        if get_response.file_span is not None:
            body_size = get_response.file_span.length
            get_response.close()
        else:
            body = get_response.body
            body_size = len(body.encode("utf-8") if isinstance(body, str) else body)
        return HTTPResponse(
            status_code=get_response.status_code,
            reason_phrase=get_response.reason_phrase,
            headers=dict(get_response.headers),
            body=b"",
            content_length_override=body_size,
        )

    def _log_access(
        self,
        *,
        address: tuple[str, int],
        method: str,
        path: str,
        status_code: int,
        bytes_out: int,
        started_at: float,
        connection_reused: bool,
    ) -> None:
        duration_ms = (time.perf_counter() - started_at) * 1000
        event = {
            "client": address[0],
            "method": method,
            "path": path,
            "status": status_code,
            "bytes_out": bytes_out,
            "latency_ms": round(duration_ms, 3),
            "connection_reused": connection_reused,
        }
        if self.log_format == "json":
            logger.info(json.dumps(event, sort_keys=True))
            return

        logger.info(
            "client=%s method=%s path=%s status=%s bytes_out=%s duration_ms=%.2f connection_reused=%s",
            event["client"],
            event["method"],
            event["path"],
            event["status"],
            event["bytes_out"],
            duration_ms,
            event["connection_reused"],
        )


def _read_error_status(exc: HTTPReadError) -> int:
    for error_type, status_code in READ_ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 400


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve a directory tree of videos over HTTP")
    parser.add_argument("-a", "--assets-root", default=ASSETS_ROOT)
    parser.add_argument("-p", "--port", type=int, default=PORT)
    parser.add_argument("--host", default=HOST)
    parser.add_argument("--workers", type=int, default=WORKER_COUNT)
    parser.add_argument("--queue-size", type=int, default=REQUEST_QUEUE_SIZE)
    parser.add_argument("--keepalive-timeout", type=float, default=KEEPALIVE_TIMEOUT_SECS)
    parser.add_argument(
        "--videos-only",
        action="store_true",
        help="hide files without a known video extension from directory indexes",
    )
    parser.add_argument("--log-format", choices=["plain", "json"], default=LOG_FORMAT)
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=LOG_LEVEL,
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        server = HTTPServer(
            assets_root=args.assets_root,
            host=args.host,
            port=args.port,
            worker_count=args.workers,
            request_queue_size=args.queue_size,
            videos_only=args.videos_only,
            keepalive_timeout_secs=args.keepalive_timeout,
            log_format=args.log_format,
        )
    except ConfigurationError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2

    try:
        server.start()
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        server.stop()
    except OSError as exc:
        logger.error("Could not listen on %s:%s: %s", args.host, args.port, exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
