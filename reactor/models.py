# reactor/models.py
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field, SecretStr, StrictStr, model_validator

logger = logging.getLogger(__name__)

_STATUS_PREFIX = "build_"


class ActionType(str, Enum):
    """Closed set of action kinds an actions document may declare."""
    CI_CALL = "ci-call"
    SHELL = "shell"


class ActionInfo(BaseModel):
    """
    Criteria and parameters of one configured rule.

    Empty criteria act as wildcards when an event is matched against them.
    """
    project: str = Field(..., min_length=1, description="Project the rule is keyed by.")
    package: str = Field(..., description="Package name criterion.")
    status: str = Field(..., description="Build/package status criterion.")
    architecture: str = Field(..., description="Target architecture criterion.")
    type: ActionType = Field(..., description="Which action variant handles the rule.")
    params: Dict[str, str] = Field(default_factory=dict, description="Action specific parameters.")

    model_config = ConfigDict(frozen=True, extra="forbid")


class Event(BaseModel):
    """One delivery from the bus, decoded into the fields rules match on."""
    routing_key: str = ""
    body: bytes = b""
    payload: Dict[str, Any] = Field(default_factory=dict)
    project: str = ""
    package: str = ""
    status: str = ""
    arch: str = ""
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_delivery(cls, routing_key: str, body: bytes | str) -> "Event":
        if isinstance(body, str):
            body = body.encode("utf-8")

        payload: Dict[str, Any] = {}
        try:
            decoded = json.loads(body.decode("utf-8")) if body else {}
            if isinstance(decoded, dict):
                payload = decoded
            else:
                logger.debug("Delivery on '%s' is not a JSON object", routing_key)
        except (UnicodeDecodeError, ValueError):
            logger.debug("Delivery on '%s' has a non-JSON body (%d bytes)", routing_key, len(body))

        status = _as_text(payload.get("status")) or _status_from_routing_key(routing_key)
        return cls(
            routing_key=routing_key,
            body=body,
            payload=payload,
            project=_as_text(payload.get("project")),
            package=_as_text(payload.get("package")),
            status=status,
            arch=_as_text(payload.get("arch") or payload.get("architecture")),
        )

    def template_fields(self) -> Dict[str, str]:
        """Flat name -> value map used for parameter substitution."""
        fields = {
            k: _as_text(v)
            for k, v in self.payload.items()
            if isinstance(k, str) and isinstance(v, (str, int, float, bool))
        }
        fields.update(
            project=self.project,
            package=self.package,
            status=self.status,
            arch=self.arch,
            routing_key=self.routing_key,
        )
        return fields


class BusCredentials(BaseModel):
    user: str = ""
    password: SecretStr = SecretStr("")
    host: str = ""
    port: int = Field(0, ge=0, le=65535, description="0 keeps the scheme's default port.")

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------- #
# Actions document schema
# ---------------------------------------------------------------------- #
class ActionDefinition(BaseModel):
    """The nested ``action`` mapping: ``type`` plus free-form string params."""
    type: StrictStr = ""

    model_config = ConfigDict(extra="allow")
    __pydantic_extra__: Dict[str, StrictStr] = Field(init=False)

    @model_validator(mode="before")
    @classmethod
    def _null_type_is_missing(cls, data: Any) -> Any:
        if isinstance(data, dict) and "type" in data and data["type"] is None:
            data = {k: v for k, v in data.items() if k != "type"}
        return data

    @property
    def params(self) -> Dict[str, str]:
        return dict(self.__pydantic_extra__ or {})


class ProjectEntry(BaseModel):
    package: StrictStr
    status: StrictStr
    arch: StrictStr
    action: ActionDefinition


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _status_from_routing_key(routing_key: str) -> str:
    last = routing_key.rsplit(".", 1)[-1]
    if last.startswith(_STATUS_PREFIX):
        return last[len(_STATUS_PREFIX):]
    return last
