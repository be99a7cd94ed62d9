"""Pure HTTP response builders."""

from http import HTTPStatus
from typing import Optional

from servicebox.domain.http_types import HttpRequest, HttpResponse, should_close

SECURITY_HEADERS = {
    "Strict-Transport-Security": "max-age=63072000; includeSubDomains",
    "Content-Security-Policy": "default-src 'self'",
    "X-Content-Type-Options": "nosniff",
}


def status_line(status: HTTPStatus) -> str:
    """Render the HTTP/1.1 status line for a status code."""
    return f"HTTP/1.1 {status.value} {status.phrase}"


def _keeps_alive(request: Optional[HttpRequest]) -> bool:
    return request is not None and not should_close(request.headers)


def no_content_response(
    request: Optional[HttpRequest] = None, status: HTTPStatus = HTTPStatus.OK
) -> HttpResponse:
    """Return a response with the given status and no body."""
    return HttpResponse(
        status_line(status),
        SECURITY_HEADERS.copy(),
        b"",
        not _keeps_alive(request),
    )


def text_response(
    message: str,
    request: Optional[HttpRequest] = None,
    status: HTTPStatus = HTTPStatus.OK,
) -> HttpResponse:
    """Return a text/plain response."""
    headers = {"Content-Type": "text/plain; charset=utf-8", **SECURITY_HEADERS}
    return HttpResponse(
        status_line(status), headers, message.encode(), not _keeps_alive(request)
    )


def blob_response(
    payload: bytes,
    content_type: str,
    request: Optional[HttpRequest] = None,
    extra_headers: Optional[dict[str, str]] = None,
) -> HttpResponse:
    """Return a 200 response carrying an arbitrary payload."""
    headers = {
        "Content-Type": content_type,
        **(extra_headers or {}),
        **SECURITY_HEADERS,
    }
    return HttpResponse(
        status_line(HTTPStatus.OK), headers, payload, not _keeps_alive(request)
    )


def not_found_response(request: HttpRequest) -> HttpResponse:
    """Return a 404 response reusing the connection preference."""
    return no_content_response(request, HTTPStatus.NOT_FOUND)


def method_not_allowed_response(
    request: HttpRequest, allowed_methods: set[str]
) -> HttpResponse:
    """Produce a 405 response enumerating the supported HTTP methods."""
    response = no_content_response(request, HTTPStatus.METHOD_NOT_ALLOWED)
    response.headers["Allow"] = ", ".join(sorted(allowed_methods))
    return response


def bad_request_response() -> HttpResponse:
    """Produce a 400 response that closes the connection."""
    return no_content_response(None, HTTPStatus.BAD_REQUEST)


def entity_too_large_response() -> HttpResponse:
    """Produce a 413 response that always closes the connection."""
    return no_content_response(None, HTTPStatus.REQUEST_ENTITY_TOO_LARGE)


def internal_error_response() -> HttpResponse:
    """Produce a 500 response for handlers that raised."""
    return no_content_response(None, HTTPStatus.INTERNAL_SERVER_ERROR)


def service_unavailable_response(
    request: Optional[HttpRequest] = None, reason: str = ""
) -> HttpResponse:
    """Produce a 503 response, optionally explaining why."""
    return text_response(reason, request, HTTPStatus.SERVICE_UNAVAILABLE)
