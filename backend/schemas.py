from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class BackendKind(str, Enum):
    EMBEDDED = "embedded"
    CLIENT_SERVER = "client-server"


BACKEND_KIND_ALIASES = {
    "embedded": BackendKind.EMBEDDED,
    "sqlite": BackendKind.EMBEDDED,
    "client-server": BackendKind.CLIENT_SERVER,
    "postgresql": BackendKind.CLIENT_SERVER,
    "postgres": BackendKind.CLIENT_SERVER,
}


class ActivityType(str, Enum):
    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"
    BAN = "ban"
    UNBAN = "unban"


ALLOWED_ROLES = {"admin", "user"}


class EmbeddedDescriptor(BaseModel):
    type: Literal["embedded"] = "embedded"
    path: str

    model_config = ConfigDict(extra="ignore", frozen=True)

    @field_validator("path")
    @classmethod
    def validate_path(cls, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError("path must not be empty")
        return value

    @property
    def kind(self) -> BackendKind:
        return BackendKind.EMBEDDED

    def cache_key(self) -> str:
        return f"embedded::{self.path}"


class ClientServerDescriptor(BaseModel):
    type: Literal["client-server"] = "client-server"
    host: str
    port: int = Field(default=5432, ge=1, le=65535)
    database: str
    user: str
    password: str = ""
    db_schema: Optional[str] = Field(default=None, alias="schema")
    ssl: bool = False

    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def accept_username_alias(cls, data: Any) -> Any:
        if isinstance(data, dict) and "user" not in data and "username" in data:
            data = {**data, "user": data["username"]}
        return data

    @field_validator("host", "database", "user")
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("db_schema")
    @classmethod
    def validate_schema(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        if not value:
            return None
        if not value.replace("_", "").isalnum():
            raise ValueError("schema must contain only letters, digits and underscores")
        return value

    @property
    def kind(self) -> BackendKind:
        return BackendKind.CLIENT_SERVER

    def cache_key(self) -> str:
        return (
            f"client-server::{self.user}@{self.host}:{self.port}/{self.database}"
            f"::{self.db_schema or ''}::{int(self.ssl)}"
        )


BackendDescriptor = Annotated[
    Union[EmbeddedDescriptor, ClientServerDescriptor], Field(discriminator="type")
]


class DescriptorEnvelope(BaseModel):
    descriptor: BackendDescriptor

    @field_validator("descriptor", mode="before")
    @classmethod
    def normalize_type(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            raise ValueError("database configuration must be an object")
        raw_type = str(value.get("type") or "").strip().lower()
        kind = BACKEND_KIND_ALIASES.get(raw_type)
        if kind is None:
            allowed = ", ".join(sorted(BACKEND_KIND_ALIASES))
            raise ValueError(f"type must be one of: {allowed}")
        return {**value, "type": kind.value}


class ActivityCreatePayload(BaseModel):
    action: str
    user: str
    type: ActivityType
    target: Optional[str] = None
    metadata: Optional[Any] = None

    model_config = ConfigDict(extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def drop_blank_required(cls, data: Any) -> Any:
        # Empty strings count as missing for the required fields.
        if isinstance(data, dict):
            data = {
                key: value
                for key, value in data.items()
                if not (key in ("action", "user", "type") and value in ("", None))
            }
        return data

    @field_validator("action", "user")
    @classmethod
    def strip_text(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class BulkActionPayload(BaseModel):
    intent: str
    user_ids: List[str] = Field(default_factory=list, alias="userIds")
    ban_reason: Optional[str] = Field(default=None, alias="banReason")
    role: Optional[str] = None

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @field_validator("user_ids")
    @classmethod
    def drop_blank_ids(cls, value: List[str]) -> List[str]:
        return [item.strip() for item in value if item and item.strip()]

    @field_validator("ban_reason")
    @classmethod
    def normalize_reason(cls, value: Optional[str]) -> Optional[str]:
        value = (value or "").strip()
        return value or None
