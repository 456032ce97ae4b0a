"""
Tidepool Kit Error Classes

Every failure the client reports is one of the exception classes below.
HTTP-derived errors keep the ``httpx.Response`` and the raw body so callers
can inspect exactly what the service returned.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    import httpx

    from .types import MalformedEntry


class TidepoolError(Exception):
    """Base error class for Tidepool Kit."""

    recovery_suggestion: Optional[str] = None

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 0,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "name": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "status_code": self.status_code,
            "details": self.details,
            "timestamp": self.timestamp,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class ConfigurationError(TidepoolError):
    """Configuration error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, 0, details)


class NetworkError(TidepoolError):
    """Transport failure before any response was received."""

    def __init__(self, cause: Optional[BaseException] = None, message: Optional[str] = None):
        super().__init__(
            "NETWORK_ERROR",
            message or (f"A network error occurred: {cause}" if cause else "A network error occurred."),
            0,
            {"cause": type(cause).__name__} if cause else None,
        )
        self.cause = cause


class SessionMissing(TidepoolError):
    """No active session for an authenticated call."""

    recovery_suggestion = "Please log in."

    def __init__(self) -> None:
        super().__init__("SESSION_MISSING", "The session is missing.")


class LoginCanceled(TidepoolError):
    """The user canceled the login flow."""

    def __init__(self) -> None:
        super().__init__("LOGIN_CANCELED", "The login was canceled.")


class RefreshTokenMissing(TidepoolError):
    """The session has no refresh token."""

    def __init__(self) -> None:
        super().__init__("REFRESH_TOKEN_MISSING", "The refresh token is missing.")


# =============================================================================
# Authentication
# =============================================================================

class AuthenticationConfigurationMissing(TidepoolError):
    """Base class for the pieces of the authorization flow that can be absent."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(code, message, 0, details)


class MissingAuthenticationIssuer(AuthenticationConfigurationMissing):
    def __init__(self) -> None:
        super().__init__("MISSING_AUTHENTICATION_ISSUER", "The authentication issuer is missing.")


class MissingAuthenticationConfiguration(AuthenticationConfigurationMissing):
    def __init__(self, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            "MISSING_AUTHENTICATION_CONFIGURATION",
            "The authentication configuration is missing.",
            details,
        )


class MissingAuthenticationCode(AuthenticationConfigurationMissing):
    def __init__(self) -> None:
        super().__init__("MISSING_AUTHENTICATION_CODE", "The authentication code is missing.")


class MissingAuthenticationToken(AuthenticationConfigurationMissing):
    def __init__(self) -> None:
        super().__init__("MISSING_AUTHENTICATION_TOKEN", "The authentication token is missing.")


class MissingAuthenticationState(AuthenticationConfigurationMissing):
    def __init__(self) -> None:
        super().__init__("MISSING_AUTHENTICATION_STATE", "The authentication state is missing.")


class AuthenticationError(TidepoolError):
    """Authentication failed with a message supplied by the server or the flow."""

    def __init__(self, message: str):
        super().__init__("AUTHENTICATION_ERROR", f"Authentication error: {message}", 401)
        self.reason = message


# =============================================================================
# Request construction
# =============================================================================

class RequestInvalid(TidepoolError):
    """The request could not be built and was never sent."""

    def __init__(self, message: str = "The request is invalid.", details: Optional[Dict[str, Any]] = None):
        super().__init__("REQUEST_INVALID", message, 0, details)


class InvalidURL(TidepoolError):
    """The request URL could not be formed."""

    def __init__(self, url: str):
        super().__init__("INVALID_URL", f"Failure creating request URL: {url}", 0, {"url": url})
        self.url = url


# =============================================================================
# Responses
# =============================================================================

@dataclass(frozen=True)
class ErrorSource:
    parameter: Optional[str] = None
    pointer: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ErrorSource":
        return cls(parameter=data.get("parameter"), pointer=data.get("pointer"))

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        if self.parameter is not None:
            result["parameter"] = self.parameter
        if self.pointer is not None:
            result["pointer"] = self.pointer
        return result


@dataclass(frozen=True)
class ErrorDetail:
    """One entry of a structured 400 error body."""

    code: str
    title: str
    detail: str
    status: Optional[int] = None
    source: Optional[ErrorSource] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ErrorDetail":
        """Create from dictionary. Raises ``KeyError``/``TypeError`` on a bad shape."""
        for key in ("code", "title", "detail"):
            if not isinstance(data[key], str):
                raise TypeError(f"{key} must be a string")
        status = data.get("status")
        if status is not None and not isinstance(status, int):
            raise TypeError("status must be an integer")
        source = data.get("source")
        return cls(
            code=data["code"],
            title=data["title"],
            detail=data["detail"],
            status=status,
            source=ErrorSource.from_dict(source) if isinstance(source, dict) else None,
            meta=data.get("meta") or {},
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"code": self.code, "title": self.title, "detail": self.detail}
        if self.status is not None:
            result["status"] = self.status
        if self.source is not None:
            result["source"] = self.source.to_dict()
        if self.meta:
            result["meta"] = self.meta
        return result


class ResponseError(TidepoolError):
    """Base class for errors derived from a received HTTP response."""

    def __init__(
        self,
        code: str,
        message: str,
        response: Optional["httpx.Response"] = None,
        data: Optional[bytes] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        status_code = getattr(response, "status_code", 0) or 0
        super().__init__(code, message, status_code if isinstance(status_code, int) else 0, details)
        self.response = response
        self.data = data


class RequestMalformed(ResponseError):
    """HTTP 400 without a decodable structured error body."""

    def __init__(self, response: "httpx.Response", data: Optional[bytes] = None):
        super().__init__("REQUEST_MALFORMED", "The request is malformed.", response, data)


class RequestMalformedJSON(RequestMalformed):
    """HTTP 400 with a list of structured error details."""

    def __init__(self, response: "httpx.Response", data: bytes, errors: List[ErrorDetail]):
        super().__init__(response, data)
        self.code = "REQUEST_MALFORMED_JSON"
        self.errors = list(errors)
        self.details = {"errors": [error.to_dict() for error in self.errors]}


class RequestNotAuthenticated(ResponseError):
    """HTTP 401."""

    def __init__(self, response: Optional["httpx.Response"] = None, data: Optional[bytes] = None):
        super().__init__("REQUEST_NOT_AUTHENTICATED", "The request is not authenticated.", response, data)


class RequestNotAuthorized(ResponseError):
    """HTTP 403."""

    def __init__(
        self,
        response: "httpx.Response",
        data: Optional[bytes] = None,
        code: str = "REQUEST_NOT_AUTHORIZED",
        message: str = "The request is not authorized.",
    ):
        super().__init__(code, message, response, data)


class RequestEmailNotVerified(RequestNotAuthorized):
    def __init__(self, response: "httpx.Response", data: Optional[bytes] = None):
        super().__init__(response, data, "REQUEST_EMAIL_NOT_VERIFIED", "The email is not verified.")


class RequestTermsOfServiceNotAccepted(RequestNotAuthorized):
    def __init__(self, response: "httpx.Response", data: Optional[bytes] = None):
        super().__init__(
            response,
            data,
            "REQUEST_TERMS_OF_SERVICE_NOT_ACCEPTED",
            "The terms of service are not accepted.",
        )


class RequestResourceNotFound(ResponseError):
    """HTTP 404."""

    def __init__(self, response: "httpx.Response", data: Optional[bytes] = None):
        super().__init__("REQUEST_RESOURCE_NOT_FOUND", "The requested resource was not found.", response, data)


class ResponseUnexpected(ResponseError):
    """The response was not a well-formed HTTP response."""

    def __init__(self, response: Any = None, data: Optional[bytes] = None):
        super().__init__("RESPONSE_UNEXPECTED", "The request returned an unexpected response.", None, data)
        self.response = response


class ResponseUnexpectedStatusCode(ResponseError):
    def __init__(self, response: "httpx.Response", data: Optional[bytes] = None):
        super().__init__(
            "RESPONSE_UNEXPECTED_STATUS_CODE",
            f"The request returned an unexpected response status code: {response.status_code}",
            response,
            data,
        )


class ResponseNotAuthenticated(ResponseError):
    """A success response without the expected authentication header."""

    def __init__(self, response: "httpx.Response", data: Optional[bytes] = None):
        super().__init__(
            "RESPONSE_NOT_AUTHENTICATED",
            "The request returned an unauthenticated response.",
            response,
            data,
        )


class ResponseMissingJSON(ResponseError):
    def __init__(self, response: "httpx.Response"):
        super().__init__("RESPONSE_MISSING_JSON", "The request returned an empty JSON response.", response, None)


class ResponseMalformedJSON(ResponseError):
    def __init__(self, response: "httpx.Response", data: bytes, cause: BaseException):
        super().__init__(
            "RESPONSE_MALFORMED_JSON",
            "The request returned a malformed JSON response.",
            response,
            data,
            {"cause": str(cause)},
        )
        self.cause = cause


class ResponseUnexpectedJSON(ResponseError):
    def __init__(self, response: "httpx.Response", data: bytes):
        super().__init__("RESPONSE_UNEXPECTED_JSON", "The request returned an unexpected JSON response.", response, data)


class ResponseMalformed(TidepoolError):
    """The response decoded, but some of the records it carries are malformed."""

    def __init__(self, malformed: List["MalformedEntry"]):
        super().__init__(
            "RESPONSE_MALFORMED",
            "The request returned a malformed response.",
            0,
            {"malformed": [entry.to_dict() for entry in malformed]},
        )
        self.malformed = list(malformed)


class ErrorResponse(TidepoolError):
    """The service returned a free-text reason for the failure."""

    def __init__(self, reason: str):
        super().__init__("ERROR_RESPONSE", reason)
        self.reason = reason


def is_tidepool_error(error: Any) -> bool:
    """Check if error is a TidepoolError."""
    return isinstance(error, TidepoolError)


def is_retryable_error(error: Any) -> bool:
    """Check if a caller could reasonably retry the failed call."""
    if isinstance(error, NetworkError):
        return True
    if isinstance(error, ResponseUnexpectedStatusCode):
        return 500 <= error.status_code < 600
    return False
