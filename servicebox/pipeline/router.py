"""Exact-path route table with middleware."""

import logging
import threading
from typing import Optional

from servicebox.bootstrap.logging_setup import component_logger
from servicebox.domain.http_types import Handler, HttpRequest, HttpResponse, Middleware
from servicebox.domain.response_builders import (
    method_not_allowed_response,
    not_found_response,
)

ROUTER_LOGGER = component_logger("pipeline.router")

NOT_FOUND_ROUTE = "not_found"


class RouteTable:
    """Maps (method, path) pairs to handlers and wraps them in middleware.

    Registering a handler for a pair that already exists replaces it.
    Middleware applies to every route, including routes added later and
    the not-found and method-not-allowed fallbacks.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._routes: dict[tuple[str, str], Handler] = {}
        self._middleware: list[Middleware] = []

    def add(self, method: str, path: str, handler: Handler) -> None:
        """Register ``handler`` for ``method`` requests to ``path``."""
        with self._lock:
            replaced = (method.upper(), path) in self._routes
            self._routes[(method.upper(), path)] = handler
        if ROUTER_LOGGER.logger.isEnabledFor(logging.DEBUG):
            ROUTER_LOGGER.debug(
                "Route registered",
                extra={
                    "event": "route_replaced" if replaced else "route_registered",
                    "method": method.upper(),
                    "route": path,
                },
            )

    def use(self, middleware: Middleware) -> None:
        """Append a middleware; the first registered one runs outermost."""
        with self._lock:
            self._middleware.append(middleware)

    def lookup(self, method: str, path: str) -> Optional[Handler]:
        """Return the handler registered for the pair, if any."""
        with self._lock:
            return self._routes.get((method.upper(), path))

    def allowed_methods(self, path: str) -> set[str]:
        """Return the methods registered for ``path``."""
        with self._lock:
            return {method for method, route in self._routes if route == path}

    def _resolve(self, request: HttpRequest) -> Handler:
        handler = self.lookup(request.method, request.path)
        if handler is not None:
            request.route = request.path
            return handler

        allowed = self.allowed_methods(request.path)
        if allowed:
            request.route = request.path
            return lambda req: method_not_allowed_response(req, allowed)

        request.route = NOT_FOUND_ROUTE
        ROUTER_LOGGER.info(
            "No matching route found",
            extra={
                "event": "route_not_found",
                "route": request.path,
                "method": request.method,
            },
        )
        return not_found_response

    def dispatch(self, request: HttpRequest) -> HttpResponse:
        """Run the request through the middleware chain and its handler."""
        handler = self._resolve(request)
        with self._lock:
            middleware = list(self._middleware)
        for wrap in reversed(middleware):
            handler = wrap(handler)
        return handler(request)
