"""Routing table for method/path-prefix handlers."""

from collections.abc import Callable

from request import HTTPRequest
from response import HTTPResponse

Handler = Callable[[HTTPRequest], HTTPResponse]


class Router:
    """Maps ``(method, prefix)`` to a handler; the longest matching prefix wins."""

    def __init__(self) -> None:
        self._routes: dict[tuple[str, str], Handler] = {}

    def add_route(self, method: str, prefix: str, handler: Handler) -> None:
        normalized_method = method.upper().strip()
        if not normalized_method:
            raise ValueError("method cannot be empty")
        if not prefix.startswith("/"):
            raise ValueError("path must start with '/'")
        self._routes[(normalized_method, prefix)] = handler

    def resolve(self, method: str, path: str) -> Handler | None:
        normalized_method = method.upper().strip()
        best_match: tuple[int, Handler] | None = None
        for (route_method, prefix), handler in self._routes.items():
            if route_method != normalized_method or not _matches(prefix, path):
                continue
            if best_match is None or len(prefix) > best_match[0]:
                best_match = (len(prefix), handler)
        return best_match[1] if best_match is not None else None

    def allowed_methods(self, path: str) -> list[str]:
        methods = {
            route_method
            for route_method, prefix in self._routes
            if _matches(prefix, path)
        }
        if "GET" in methods:
            methods.add("HEAD")
        return sorted(methods)


def _matches(prefix: str, path: str) -> bool:
    if prefix == "/" or path == prefix:
        return True
    return path.startswith(prefix.rstrip("/") + "/")
