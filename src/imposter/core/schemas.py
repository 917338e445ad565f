"""Pydantic contracts for session settings and inbound hub events."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional, Type

import orjson
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import InvalidPayload

MAX_NAME_LENGTH = 20
MAX_TURN_LENGTH = 100
MAX_CHAT_LENGTH = 300


class ImposterMode(str, Enum):
    """What imposters are dealt."""

    GENERIC = "generic"
    DECOY = "decoy"


class SessionSettings(BaseModel):
    """Host-controlled game configuration."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    imposter_count: int = Field(1, alias="imposterCount", ge=1, le=9)
    imposter_mode: ImposterMode = Field(ImposterMode.GENERIC, alias="imposterMode")
    similarity_floor: int = Field(3, alias="similarityFloor", ge=1, le=4)
    round_count: int = Field(2, alias="roundCount", ge=1, le=5)
    skip_discussion: bool = Field(False, alias="skipDiscussion")

    def merge(self, patch: "SettingsPatch") -> "SessionSettings":
        """Return new settings with the patch applied, re-validating every field."""
        data = self.model_dump()
        data.update(patch.model_dump(exclude_none=True))
        return SessionSettings.model_validate(data)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class SettingsPatch(BaseModel):
    """Partial settings update; omitted fields keep their current value."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    imposter_count: Optional[int] = Field(None, alias="imposterCount")
    imposter_mode: Optional[ImposterMode] = Field(None, alias="imposterMode")
    similarity_floor: Optional[int] = Field(None, alias="similarityFloor")
    round_count: Optional[int] = Field(None, alias="roundCount")
    skip_discussion: Optional[bool] = Field(None, alias="skipDiscussion")


def _normalize_code(value: str) -> str:
    return value.strip().upper()


class CreateSessionPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    display_name: str = Field(..., alias="displayName", min_length=1, max_length=MAX_NAME_LENGTH)


class SessionCodePayload(BaseModel):
    """Payload for events that only name a session."""

    model_config = ConfigDict(populate_by_name=True)

    code: str = Field(..., min_length=1)

    @field_validator("code")
    @classmethod
    def _upper(cls, value: str) -> str:
        return _normalize_code(value)


class JoinSessionPayload(SessionCodePayload):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    display_name: str = Field(..., alias="displayName", min_length=1, max_length=MAX_NAME_LENGTH)


class UpdateSettingsPayload(SessionCodePayload):
    patch: SettingsPatch


class SubmitTurnPayload(SessionCodePayload):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    round_index: int = Field(..., alias="roundIndex", ge=0)
    text: str = Field(..., max_length=MAX_TURN_LENGTH)


class ChatPayload(SessionCodePayload):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    text: str = Field(..., min_length=1, max_length=MAX_CHAT_LENGTH)


EVENT_PAYLOADS: Dict[str, Type[BaseModel]] = {
    "create-session": CreateSessionPayload,
    "join-session": JoinSessionPayload,
    "update-settings": UpdateSettingsPayload,
    "start-session": SessionCodePayload,
    "submit-turn": SubmitTurnPayload,
    "request-reveal": SessionCodePayload,
    "send-chat": ChatPayload,
    "leave-session": SessionCodePayload,
    "play-again": SessionCodePayload,
    "back-to-lobby": SessionCodePayload,
    "end-session": SessionCodePayload,
    "get-session": SessionCodePayload,
}


def validate_payload(*, event: str, payload: Any) -> BaseModel:
    """Validate inbound event data or raise :class:`InvalidPayload`.

    >>> validate_payload(event="join-session", payload={"code": "abc234", "displayName": " Ana "}).code
    'ABC234'
    """

    model = EVENT_PAYLOADS[event]
    if not isinstance(payload, dict):
        raise InvalidPayload(event, ["payload must be an object"])
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise InvalidPayload(event, exc.errors(include_url=False)) from exc


def serialize_for_logging(obj: BaseModel) -> str:
    """Serialize Pydantic models to JSON string for logging."""
    return orjson.dumps(obj.model_dump(mode="json")).decode("utf-8")
