"""Report decoder: turns a client's JSON payload into a typed Report.

Shape sent by the t3monitoring_client extension:

    {
      "core": {"phpVersion": ..., "mysqlClientVersion": ..., "typo3Version": ...},
      "extensions": {"<name>": {"version", "title", "description", "state", "isLoaded"}},
      "users": {"backend": [{"userName", "realName", "emailAddress", "description", "lastLogin"}]},
      "extra": {"info": ..., "warning": ..., "danger": ...}      # optional
    }
"""

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from t3monitor.services.errors import DecodeError

EXTRA_BUCKETS = ("info", "warning", "danger")


class _ReportModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CoreInfo(_ReportModel):
    php_version: str = Field(default="", alias="phpVersion")
    mysql_client_version: str = Field(default="", alias="mysqlClientVersion")
    typo3_version: str = Field(alias="typo3Version", min_length=1)


class ExtensionInfo(_ReportModel):
    version: str
    title: str = ""
    description: str = ""
    state: str = ""
    is_loaded: bool = Field(default=False, alias="isLoaded")

    @field_validator("title", "description", "state", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v


class BackendUserInfo(_ReportModel):
    user_name: str = Field(alias="userName", min_length=1)
    real_name: str = Field(default="", alias="realName")
    email_address: str = Field(default="", alias="emailAddress")
    description: str = ""
    last_login: int = Field(default=0, alias="lastLogin")

    @field_validator("real_name", "email_address", "description", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("last_login", mode="before")
    @classmethod
    def _empty_login(cls, v: Any) -> Any:
        return 0 if v in (None, "") else v


class UserSection(_ReportModel):
    backend: list[BackendUserInfo]


class Report(_ReportModel):
    """A decoded client status report."""

    core: CoreInfo
    extensions: dict[str, ExtensionInfo]
    users: UserSection
    extra: dict[str, Any] | None = None

    @field_validator("extensions", mode="before")
    @classmethod
    def _empty_list_is_empty_map(cls, v: Any) -> Any:
        # PHP's json_encode turns an empty array into [] rather than {}
        return {} if v == [] else v

    @field_validator("extra", mode="before")
    @classmethod
    def _extra_must_be_map(cls, v: Any) -> Any:
        return v if isinstance(v, dict) else None

    @property
    def core_version(self) -> str:
        return self.core.typo3_version

    @property
    def php_version(self) -> str:
        return self.core.php_version

    @property
    def mysql_version(self) -> str:
        return self.core.mysql_client_version

    @property
    def backend_users(self) -> list[BackendUserInfo]:
        return self.users.backend

    def extra_data(self, bucket: str) -> str:
        """Compact JSON of one diagnostic bucket, "" when not reported."""
        value = (self.extra or {}).get(bucket)
        if not isinstance(value, dict | list):
            return ""
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def decode(raw: bytes | str) -> Report:
    """Parse and validate a raw report. Raises DecodeError."""
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise DecodeError(f"Invalid JSON in client response: {e}") from e

    if not isinstance(data, dict):
        raise DecodeError("Client response is not a JSON object")

    try:
        return Report.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"])
        raise DecodeError(
            f"Incomplete client response: {location}: {first['msg']}"
        ) from e
