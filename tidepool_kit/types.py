"""
Tidepool Kit Type Definitions

Value types for configuration, sessions and the service's resource model.
Server-identified entities are frozen; an update is always a new value.
"""

import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from .environment import Environment


DEFAULT_CLIENT_ID = "tidepool-kit"
DEFAULT_REDIRECT_URI = "org.tidepool.tidepoolkit.auth://redirect"
DEFAULT_SCOPES = ("openid", "offline_access")


@dataclass
class TidepoolConfig:
    """Client configuration options."""

    # OAuth2 client identifier registered with the service
    client_id: str = DEFAULT_CLIENT_ID
    # Redirect URI the user agent returns to after authorization
    redirect_uri: str = DEFAULT_REDIRECT_URI
    # Requested OAuth2 scopes
    scopes: Sequence[str] = DEFAULT_SCOPES
    # Environment used for login when none is given (default: registry default)
    environment: Optional[Environment] = None
    # Request timeout in seconds (default: 30)
    timeout: float = 30.0
    # Extra headers to include in requests
    headers: Optional[Dict[str, str]] = None
    # User-Agent header value
    user_agent: str = "tidepool-kit-python"
    # Enable debug logging (default: False)
    debug: bool = False

    @property
    def redirect_scheme(self) -> str:
        return self.redirect_uri.split(":", 1)[0] if ":" in self.redirect_uri else ""


# =============================================================================
# Session
# =============================================================================

@dataclass(frozen=True)
class Session:
    """
    Authenticated identity and tokens for one environment.

    A session always has a non-empty access token. Absence of a session is
    the logged-out state.
    """

    environment: Environment
    access_token: str
    user_id: str
    refresh_token: Optional[str] = None
    trace: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: float = field(default_factory=time.time)
    expires_at: Optional[float] = None

    def __post_init__(self) -> None:
        if not self.access_token:
            raise ValueError("access_token must not be empty")
        if not isinstance(self.environment, Environment):
            raise ValueError("environment must be an Environment")

    @property
    def is_expired(self) -> bool:
        return self.expires_at is not None and time.time() >= self.expires_at

    def refreshed(
        self,
        access_token: str,
        refresh_token: Optional[str] = None,
        expires_in: Optional[float] = None,
    ) -> "Session":
        """Return a new session with rotated tokens; identity and environment are kept."""
        return replace(
            self,
            access_token=access_token,
            refresh_token=refresh_token or self.refresh_token,
            expires_at=time.time() + expires_in if expires_in else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for a persistence collaborator."""
        return {
            "environment": self.environment.to_dict(),
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "user_id": self.user_id,
            "trace": self.trace,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        return cls(
            environment=Environment.from_dict(data["environment"]),
            access_token=data["access_token"],
            user_id=data["user_id"],
            refresh_token=data.get("refresh_token"),
            trace=data.get("trace") or uuid.uuid4().hex,
            created_at=data.get("created_at") or time.time(),
            expires_at=data.get("expires_at"),
        )

    def __repr__(self) -> str:
        return f"Session(environment={self.environment!r}, user_id={self.user_id!r})"


# =============================================================================
# Service info
# =============================================================================

@dataclass(frozen=True)
class Info:
    """Response of ``GET /info``."""

    auth_url: Optional[str] = None
    issuer_url: Optional[str] = None
    versions: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Info":
        if not isinstance(data, dict):
            raise TypeError("info must be an object")
        auth = data.get("auth") or {}
        if not isinstance(auth, dict):
            raise TypeError("auth must be an object")
        return cls(
            auth_url=auth.get("url"),
            issuer_url=auth.get("issuerURL"),
            versions=data.get("versions") or {},
        )


# =============================================================================
# Profile
# =============================================================================

@dataclass(frozen=True)
class PatientProfile:
    birthday: Optional[str] = None
    diagnosis_date: Optional[str] = None
    diagnosis_type: Optional[str] = None
    target_devices: List[str] = field(default_factory=list)
    target_timezone: Optional[str] = None
    about: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PatientProfile":
        return cls(
            birthday=data.get("birthday"),
            diagnosis_date=data.get("diagnosisDate"),
            diagnosis_type=data.get("diagnosisType"),
            target_devices=list(data.get("targetDevices") or []),
            target_timezone=data.get("targetTimezone"),
            about=data.get("about"),
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        if self.birthday is not None:
            result["birthday"] = self.birthday
        if self.diagnosis_date is not None:
            result["diagnosisDate"] = self.diagnosis_date
        if self.diagnosis_type is not None:
            result["diagnosisType"] = self.diagnosis_type
        if self.target_devices:
            result["targetDevices"] = list(self.target_devices)
        if self.target_timezone is not None:
            result["targetTimezone"] = self.target_timezone
        if self.about is not None:
            result["about"] = self.about
        return result


@dataclass(frozen=True)
class Profile:
    """User profile returned by ``GET /metadata/{userId}/profile``."""

    full_name: Optional[str] = None
    patient: Optional[PatientProfile] = None

    @property
    def is_patient(self) -> bool:
        return self.patient is not None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Profile":
        if not isinstance(data, dict):
            raise TypeError("profile must be an object")
        full_name = data.get("fullName")
        if full_name is not None and not isinstance(full_name, str):
            raise TypeError("fullName must be a string")
        patient = data.get("patient")
        return cls(
            full_name=full_name,
            patient=PatientProfile.from_dict(patient) if isinstance(patient, dict) else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        if self.full_name is not None:
            result["fullName"] = self.full_name
        if self.patient is not None:
            result["patient"] = self.patient.to_dict()
        return result


# =============================================================================
# Data sets
# =============================================================================

@dataclass(frozen=True)
class DataSetClient:
    name: str
    version: str
    private: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"name": self.name, "version": self.version}
        if self.private is not None:
            result["private"] = self.private
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DataSetClient":
        if not isinstance(data["name"], str) or not isinstance(data["version"], str):
            raise TypeError("client name and version must be strings")
        return cls(name=data["name"], version=data["version"], private=data.get("private"))


@dataclass(frozen=True)
class Deduplicator:
    NONE = "org.tidepool.deduplicator.none"
    DATA_SET_DELETE_ORIGIN = "org.tidepool.deduplicator.dataset.delete.origin"
    DEVICE_DEACTIVATE_HASH = "org.tidepool.deduplicator.device.deactivate.hash"

    name: str = NONE
    version: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"name": self.name}
        if self.version is not None:
            result["version"] = self.version
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Deduplicator":
        if not isinstance(data["name"], str):
            raise TypeError("deduplicator name must be a string")
        return cls(name=data["name"], version=data.get("version"))


@dataclass(frozen=True)
class DataSet:
    """
    A data set (upload). ``upload_id`` stays None until the service assigns one.
    """

    CONTINUOUS = "continuous"
    NORMAL = "normal"

    data_set_type: str
    client: DataSetClient
    deduplicator: Deduplicator = field(default_factory=Deduplicator)
    upload_id: Optional[str] = None
    created_time: Optional[str] = None
    time_processing: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "type": "upload",
            "dataSetType": self.data_set_type,
            "client": self.client.to_dict(),
            "deduplicator": self.deduplicator.to_dict(),
        }
        if self.time_processing is not None:
            result["timeProcessing"] = self.time_processing
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DataSet":
        """Decode a server data set. Raises on a missing server identifier."""
        if not isinstance(data, dict):
            raise TypeError("data set must be an object")
        upload_id = data.get("uploadId") or data.get("id")
        if not isinstance(upload_id, str):
            raise KeyError("uploadId")
        deduplicator = data.get("deduplicator")
        return cls(
            data_set_type=data.get("dataSetType", cls.NORMAL),
            client=DataSetClient.from_dict(data["client"]),
            deduplicator=Deduplicator.from_dict(deduplicator) if deduplicator else Deduplicator(),
            upload_id=upload_id,
            created_time=data.get("createdTime"),
            time_processing=data.get("timeProcessing"),
        )


@dataclass(frozen=True)
class DataSetFilter:
    client_name: Optional[str] = None
    deleted: Optional[bool] = None

    def to_params(self) -> Dict[str, str]:
        params: Dict[str, str] = {}
        if self.client_name is not None:
            params["client.name"] = self.client_name
        if self.deleted is not None:
            params["deleted"] = "true" if self.deleted else "false"
        return params


# =============================================================================
# Data
# =============================================================================

# Fields each known datum type must carry to be well formed
REQUIRED_DATUM_FIELDS: Dict[str, Dict[str, Any]] = {
    "cbg": {"value": (int, float), "units": str},
    "smbg": {"value": (int, float), "units": str},
    "basal": {"deliveryType": str, "duration": (int, float)},
    "bolus": {"subType": str},
    "food": {"nutrition": dict},
    "insulin": {"dose": dict},
    "physicalActivity": {"duration": dict},
    "deviceEvent": {"subType": str},
}


@dataclass(frozen=True)
class Origin:
    id: str
    name: Optional[str] = None
    version: Optional[str] = None
    type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"id": self.id}
        if self.name is not None:
            result["name"] = self.name
        if self.version is not None:
            result["version"] = self.version
        if self.type is not None:
            result["type"] = self.type
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Origin":
        if not isinstance(data["id"], str):
            raise TypeError("origin id must be a string")
        return cls(id=data["id"], name=data.get("name"), version=data.get("version"), type=data.get("type"))


@dataclass(frozen=True)
class Selector:
    """Minimal key addressing an accepted datum for deletion."""

    data_set_id: str
    type: str
    time: str
    origin_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {"origin": {"id": self.origin_id}, "time": self.time, "type": self.type}


def _parse_time(value: Any) -> datetime:
    if not isinstance(value, str):
        raise TypeError("time must be a string")
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass(frozen=True)
class Datum:
    """
    A single time-series data point.

    Type specific fields live in ``fields`` using the service's JSON names.
    """

    type: str
    time: str
    origin: Optional[Origin] = None
    id: Optional[str] = None
    upload_id: Optional[str] = None
    device_id: Optional[str] = None
    fields: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = dict(self.fields)
        result["type"] = self.type
        result["time"] = self.time
        if self.origin is not None:
            result["origin"] = self.origin.to_dict()
        if self.id is not None:
            result["id"] = self.id
        if self.upload_id is not None:
            result["uploadId"] = self.upload_id
        if self.device_id is not None:
            result["deviceId"] = self.device_id
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Datum":
        """Decode a datum, raising ``ValueError`` with every problem found."""
        if not isinstance(data, dict):
            raise ValueError("datum must be an object")

        problems: List[str] = []
        datum_type = data.get("type")
        if not isinstance(datum_type, str) or not datum_type:
            problems.append("type is missing")
        try:
            _parse_time(data.get("time"))
        except (TypeError, ValueError):
            problems.append("time is missing or invalid")

        for name, expected in REQUIRED_DATUM_FIELDS.get(datum_type or "", {}).items():
            value = data.get(name)
            if value is None or isinstance(value, bool) or not isinstance(value, expected):
                problems.append(f"{name} is missing or invalid")

        origin: Optional[Origin] = None
        if data.get("origin") is not None:
            try:
                origin = Origin.from_dict(data["origin"])
            except (KeyError, TypeError):
                problems.append("origin is invalid")

        if problems:
            raise ValueError("; ".join(problems))

        known = {"type", "time", "origin", "id", "uploadId", "deviceId"}
        return cls(
            type=data["type"],
            time=data["time"],
            origin=origin,
            id=data.get("id"),
            upload_id=data.get("uploadId"),
            device_id=data.get("deviceId"),
            fields={key: value for key, value in data.items() if key not in known},
        )

    def selector(self, data_set_id: Optional[str] = None) -> Optional[Selector]:
        """Selector for this datum, or None when it cannot be addressed."""
        data_set_id = data_set_id or self.upload_id
        if not data_set_id or self.origin is None:
            return None
        return Selector(data_set_id=data_set_id, type=self.type, time=self.time, origin_id=self.origin.id)


@dataclass(frozen=True)
class DatumFilter:
    data_set_id: Optional[str] = None
    types: Optional[Sequence[str]] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    device_id: Optional[str] = None

    def to_params(self) -> Dict[str, str]:
        params: Dict[str, str] = {}
        if self.data_set_id is not None:
            params["uploadId"] = self.data_set_id
        if self.types:
            params["type"] = ",".join(self.types)
        if self.start_date is not None:
            params["startDate"] = self.start_date
        if self.end_date is not None:
            params["endDate"] = self.end_date
        if self.device_id is not None:
            params["deviceId"] = self.device_id
        return params


@dataclass(frozen=True)
class MalformedEntry:
    """A returned record that failed to decode. ``raw`` is kept as received."""

    index: int
    raw: Any
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "raw": self.raw, "reason": self.reason}
