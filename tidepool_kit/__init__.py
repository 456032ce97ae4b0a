"""
Tidepool Kit Python SDK

An async client for the Tidepool health-data service: OAuth2 login,
single-flight token refresh, typed errors, and profile, data set and
data point operations.
"""

from .client import TidepoolClient, create_tidepool_client
from .bulk import DatumBatch, partition_data
from .environment import DEFAULT_ENVIRONMENTS, PRODUCTION, Environment, EnvironmentRegistry
from .oauth import CANCELED, AuthConfiguration, Cancellation, OAuth2Authenticator, UserAgent
from .refresher import TokenRefresher
from .session import SessionObserver, SessionStore
from .types import (
    DataSet,
    DataSetClient,
    DataSetFilter,
    Datum,
    DatumFilter,
    Deduplicator,
    Info,
    MalformedEntry,
    Origin,
    PatientProfile,
    Profile,
    Selector,
    Session,
    TidepoolConfig,
)
from .errors import (
    TidepoolError,
    ConfigurationError,
    NetworkError,
    SessionMissing,
    LoginCanceled,
    RefreshTokenMissing,
    AuthenticationConfigurationMissing,
    MissingAuthenticationIssuer,
    MissingAuthenticationConfiguration,
    MissingAuthenticationCode,
    MissingAuthenticationToken,
    MissingAuthenticationState,
    AuthenticationError,
    RequestInvalid,
    InvalidURL,
    ErrorDetail,
    ErrorSource,
    RequestMalformed,
    RequestMalformedJSON,
    RequestNotAuthenticated,
    RequestNotAuthorized,
    RequestEmailNotVerified,
    RequestTermsOfServiceNotAccepted,
    RequestResourceNotFound,
    ResponseUnexpected,
    ResponseUnexpectedStatusCode,
    ResponseNotAuthenticated,
    ResponseMissingJSON,
    ResponseMalformedJSON,
    ResponseUnexpectedJSON,
    ResponseMalformed,
    ErrorResponse,
    is_tidepool_error,
    is_retryable_error,
)

__version__ = "1.0.0"
__all__ = [
    # Clients
    "TidepoolClient",
    "create_tidepool_client",
    "DatumBatch",
    "partition_data",
    # Environments
    "Environment",
    "EnvironmentRegistry",
    "DEFAULT_ENVIRONMENTS",
    "PRODUCTION",
    # Session and authentication
    "Session",
    "SessionStore",
    "SessionObserver",
    "TokenRefresher",
    "OAuth2Authenticator",
    "AuthConfiguration",
    "UserAgent",
    "Cancellation",
    "CANCELED",
    # Types
    "TidepoolConfig",
    "Info",
    "Profile",
    "PatientProfile",
    "DataSet",
    "DataSetClient",
    "DataSetFilter",
    "Deduplicator",
    "Datum",
    "DatumFilter",
    "Origin",
    "Selector",
    "MalformedEntry",
    # Errors
    "TidepoolError",
    "ConfigurationError",
    "NetworkError",
    "SessionMissing",
    "LoginCanceled",
    "RefreshTokenMissing",
    "AuthenticationConfigurationMissing",
    "MissingAuthenticationIssuer",
    "MissingAuthenticationConfiguration",
    "MissingAuthenticationCode",
    "MissingAuthenticationToken",
    "MissingAuthenticationState",
    "AuthenticationError",
    "RequestInvalid",
    "InvalidURL",
    "ErrorDetail",
    "ErrorSource",
    "RequestMalformed",
    "RequestMalformedJSON",
    "RequestNotAuthenticated",
    "RequestNotAuthorized",
    "RequestEmailNotVerified",
    "RequestTermsOfServiceNotAccepted",
    "RequestResourceNotFound",
    "ResponseUnexpected",
    "ResponseUnexpectedStatusCode",
    "ResponseNotAuthenticated",
    "ResponseMissingJSON",
    "ResponseMalformedJSON",
    "ResponseUnexpectedJSON",
    "ResponseMalformed",
    "ErrorResponse",
    "is_tidepool_error",
    "is_retryable_error",
]
