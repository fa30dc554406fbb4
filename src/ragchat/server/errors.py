"""Error taxonomy for the chat proxy and its JSON/SSE error shapes."""

from __future__ import annotations

from typing import Any, Mapping

from openai import APIStatusError

__all__ = [
    "AuthenticationError",
    "ConfigurationError",
    "InvalidRequestError",
    "ProxyError",
    "UnsupportedMediaError",
    "error_payload",
    "error_status",
    "stream_error_payload",
]


class ProxyError(Exception):
    """Base class for failures raised before a response is committed."""

    status_code: int = 500
    error_type: str = "server_error"

    def __init__(self, message: str, *, code: str | None = None, param: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.param = param

    def to_payload(self) -> dict[str, Any]:
        error: dict[str, Any] = {"message": self.message, "type": self.error_type}
        if self.code is not None:
            error["code"] = self.code
        if self.param is not None:
            error["param"] = self.param
        return {"error": error}


class ConfigurationError(ProxyError):
    """A server-side secret such as the OpenAI key is missing."""

    status_code = 500
    error_type = "configuration_error"


class AuthenticationError(ProxyError):
    status_code = 401
    error_type = "authentication_error"


class InvalidRequestError(ProxyError):
    status_code = 400
    error_type = "invalid_request_error"


class UnsupportedMediaError(ProxyError):
    status_code = 415
    error_type = "invalid_request_error"


def _upstream_payload(exc: APIStatusError) -> dict[str, Any]:
    body = exc.body
    details: Mapping[str, Any] = {}
    if isinstance(body, Mapping):
        nested = body.get("error")
        details = nested if isinstance(nested, Mapping) else body
    return {
        "error": {
            "message": details.get("message") or exc.message or "OpenAI error",
            "type": details.get("type") or "openai_error",
            "code": details.get("code"),
            "param": details.get("param"),
        }
    }


def error_status(exc: BaseException) -> int:
    if isinstance(exc, ProxyError):
        return exc.status_code
    if isinstance(exc, APIStatusError):
        return exc.status_code
    return 500


def error_payload(exc: BaseException) -> dict[str, Any]:
    """Return the JSON body for ``exc`` when no stream bytes were sent yet."""

    if isinstance(exc, ProxyError):
        return exc.to_payload()
    if isinstance(exc, APIStatusError):
        return _upstream_payload(exc)
    return {"error": {"message": str(exc) or "Internal server error", "type": "server_error"}}


def stream_error_payload(exc: BaseException) -> dict[str, Any]:
    """Return the in-band error chunk for a failure after streaming began."""

    if isinstance(exc, APIStatusError):
        return _upstream_payload(exc)
    return {"error": {"message": str(exc) or "Streaming error", "type": "stream_error"}}
