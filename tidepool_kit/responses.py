"""
Tidepool Kit Response Classification

Maps a completed HTTP exchange to either a decoded payload or one precise
``TidepoolError``. The order of the checks in ``handle_response`` matters:
a 401 is reported as not-authenticated whatever its body says.
"""

import json
import logging
from typing import Any, Callable, List, Optional, TypeVar

import httpx

from .errors import (
    ErrorDetail,
    ErrorResponse,
    NetworkError,
    RequestEmailNotVerified,
    RequestMalformed,
    RequestMalformedJSON,
    RequestNotAuthenticated,
    RequestNotAuthorized,
    RequestResourceNotFound,
    RequestTermsOfServiceNotAccepted,
    ResponseMalformedJSON,
    ResponseMissingJSON,
    ResponseNotAuthenticated,
    ResponseUnexpected,
    ResponseUnexpectedJSON,
    ResponseUnexpectedStatusCode,
)


logger = logging.getLogger("tidepool_kit")

T = TypeVar("T")

EMAIL_NOT_VERIFIED_MARKER = "email-not-verified"
TERMS_NOT_ACCEPTED_MARKER = "terms-of-service-not-accepted"


async def dispatch(http_client: httpx.AsyncClient, request: httpx.Request) -> httpx.Response:
    """Send a request, turning transport failures into ``NetworkError``."""
    try:
        return await http_client.send(request)
    except httpx.TimeoutException as e:
        raise NetworkError(e, "Request timeout") from e
    except httpx.RequestError as e:
        raise NetworkError(e) from e


def decode_error_details(data: Optional[bytes]) -> Optional[List[ErrorDetail]]:
    """
    Decode a structured error body.

    Accepts a bare JSON array of error objects or an object with an
    ``errors`` array. Returns None when the body is anything else.
    """
    if not data:
        return None
    try:
        payload = json.loads(data)
    except (ValueError, RecursionError):
        return None
    if isinstance(payload, dict):
        payload = payload.get("errors")
    if not isinstance(payload, list) or not payload:
        return None
    try:
        return [ErrorDetail.from_dict(entry) for entry in payload]
    except (KeyError, TypeError, AttributeError):
        return None


def _forbidden_marker(data: Optional[bytes]) -> Optional[str]:
    if not data:
        return None
    try:
        payload = json.loads(data)
    except (ValueError, RecursionError):
        payload = None
    if isinstance(payload, dict):
        code = payload.get("code")
        if code in (EMAIL_NOT_VERIFIED_MARKER, TERMS_NOT_ACCEPTED_MARKER):
            return code
    text = data.decode("utf-8", errors="replace")
    for marker in (EMAIL_NOT_VERIFIED_MARKER, TERMS_NOT_ACCEPTED_MARKER):
        if marker in text:
            return marker
    return None


def handle_response(
    response: Any,
    parse: Optional[Callable[[Any], T]] = None,
    json_required: bool = True,
    required_header: Optional[str] = None,
) -> Any:
    """
    Classify a response.

    Args:
        response: The received response.
        parse: Converts the decoded JSON into the expected shape. It signals a
            shape mismatch by raising ``KeyError``, ``TypeError`` or ``ValueError``.
        json_required: Whether a success response must carry a JSON body.
        required_header: Header a success response must echo back.

    Returns:
        The parsed payload, the raw decoded JSON when ``parse`` is None,
        or None when no JSON is required.
    """
    if not isinstance(response, httpx.Response) or not 100 <= response.status_code <= 599:
        raise ResponseUnexpected(response, getattr(response, "content", None))

    status = response.status_code
    data = response.content

    if status == 400:
        errors = decode_error_details(data)
        if errors is not None:
            raise RequestMalformedJSON(response, data, errors)
        raise RequestMalformed(response, data or None)
    if status == 401:
        raise RequestNotAuthenticated(response, data or None)
    if status == 403:
        marker = _forbidden_marker(data)
        if marker == EMAIL_NOT_VERIFIED_MARKER:
            raise RequestEmailNotVerified(response, data or None)
        if marker == TERMS_NOT_ACCEPTED_MARKER:
            raise RequestTermsOfServiceNotAccepted(response, data or None)
        raise RequestNotAuthorized(response, data or None)
    if status == 404:
        raise RequestResourceNotFound(response, data or None)
    if not 200 <= status <= 299:
        raise ResponseUnexpectedStatusCode(response, data or None)

    if required_header and not response.headers.get(required_header):
        raise ResponseNotAuthenticated(response, data or None)

    if not json_required:
        return None
    if not data:
        raise ResponseMissingJSON(response)

    try:
        payload = json.loads(data)
    except (ValueError, RecursionError) as e:
        raise ResponseMalformedJSON(response, data, e) from e

    if parse is None:
        return payload

    try:
        return parse(payload)
    except (KeyError, TypeError, ValueError) as e:
        if isinstance(payload, dict) and isinstance(payload.get("reason"), str):
            raise ErrorResponse(payload["reason"]) from e
        logger.debug("[Tidepool] Unexpected JSON shape: %s", e)
        raise ResponseUnexpectedJSON(response, data) from e
