"""Poll records as stored in the shared store and sent to displays.

Stored records carry ``schemaVersion`` and are migrated on read, so call
sites never probe for legacy field names.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

POLL_STATE_VERSION = 2
QUEUED_POLL_VERSION = 2
POLL_SETTINGS_VERSION = 2

# Anything above this is a millisecond epoch timestamp (legacy records).
_MS_THRESHOLD = 1e11


def _to_seconds(value: Any) -> Any:
    if isinstance(value, (int, float)) and value > _MS_THRESHOLD:
        return value / 1000.0
    return value


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class PollStatus(str, Enum):
    ACTIVE = "active"
    WINNER = "winner"


class PollOption(CamelModel):
    label: str
    votes: int = Field(default=0, ge=0)
    # voterId -> index of the option the voter chose
    voters: Dict[str, int] = Field(default_factory=dict)


class PollState(CamelModel):
    schema_version: int = POLL_STATE_VERSION
    id: str
    question: str
    options: List[PollOption]
    started_at: float
    duration_seconds: int
    status: PollStatus
    winner_display_until: Optional[float] = None
    winner_index: Optional[int] = None
    winner_message: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _migrate(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        version = data.get("schemaVersion", data.get("schema_version", 1))
        if version < 2:
            for key in ("startedAt", "winnerDisplayUntil"):
                if key in data:
                    data[key] = _to_seconds(data[key])
            options = []
            for index, option in enumerate(data.get("options") or []):
                if isinstance(option, dict):
                    # v1 kept voter -> number of messages; v2 keeps voter -> chosen index
                    option = dict(option, voters={voter: index for voter in (option.get("voters") or {})})
                options.append(option)
            data["options"] = options
            data["schemaVersion"] = POLL_STATE_VERSION
        return data

    @model_validator(mode="after")
    def _recount(self) -> "PollState":
        choice: Dict[str, int] = {}
        for index, option in enumerate(self.options):
            for voter in option.voters:
                choice[voter] = index
        for index, option in enumerate(self.options):
            option.voters = {voter: index for voter, chosen in choice.items() if chosen == index}
            option.votes = len(option.voters)
        return self

    @property
    def ends_at(self) -> float:
        return self.started_at + self.duration_seconds

    def remaining_seconds(self, now: float) -> float:
        return max(0.0, self.ends_at - now)

    def is_due(self, now: float) -> bool:
        """True once the voting timer has run out."""
        return self.status == PollStatus.ACTIVE and now >= self.ends_at

    def winner_display_elapsed(self, now: float) -> bool:
        """True once the result has been shown long enough. A winner with no
        display window (legacy or hand-written records) counts as elapsed."""
        if self.status != PollStatus.WINNER:
            return False
        return self.winner_display_until is None or now > self.winner_display_until

    def leading_index(self) -> Optional[int]:
        """Index of the option with most votes; ties go to the first declared."""
        best: Optional[int] = None
        for index, option in enumerate(self.options):
            if best is None or option.votes > self.options[best].votes:
                best = index
        return best

    def voter_choice(self, voter_id: str) -> Optional[int]:
        for index, option in enumerate(self.options):
            if voter_id in option.voters:
                return index
        return None


class PollContent(BaseModel):
    """Question and option labels produced by a content provider."""

    question: str
    options: List[str]


class QueuedPoll(CamelModel):
    schema_version: int = QUEUED_POLL_VERSION
    question: str
    options: List[str]
    duration_seconds: Optional[int] = None

    @model_validator(mode="before")
    @classmethod
    def _migrate(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if data.get("schemaVersion", data.get("schema_version", 1)) < 2:
            data["options"] = [
                option.get("label", "") if isinstance(option, dict) else option
                for option in data.get("options") or []
            ]
            data["schemaVersion"] = QUEUED_POLL_VERSION
        return data


class PollSettings(CamelModel):
    """Operator configuration, re-read at every decision point."""

    schema_version: int = POLL_SETTINGS_VERSION
    enabled: bool = False
    duration_seconds: int = Field(default=60, ge=5)
    auto_start_enabled: bool = False
    minutes_since_last_poll: int = 5
    winner_display_seconds: int = Field(default=10, ge=0)
    max_queued_polls: int = Field(default=5, ge=1)

    @model_validator(mode="before")
    @classmethod
    def _migrate(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "minutesSinceLastPoll" not in data and "minutes_since_last_poll" not in data:
            if isinstance(data.get("chatIdleMinutes"), (int, float)):
                data["minutesSinceLastPoll"] = int(data["chatIdleMinutes"])
        if "autoStartEnabled" not in data and "auto_start_enabled" not in data:
            if "autoStartPollsEnabled" in data:
                data["autoStartEnabled"] = bool(data["autoStartPollsEnabled"])
        data.pop("chatIdleMinutes", None)
        data.pop("autoStartPollsEnabled", None)
        data["schemaVersion"] = POLL_SETTINGS_VERSION
        return data

    @field_validator("minutes_since_last_poll")
    @classmethod
    def _clamp_minutes(cls, value: int) -> int:
        return max(1, min(30, value))


class PollEvent(CamelModel):
    """Chat relay event emitted when a poll starts or ends."""

    type: Literal["poll_started", "poll_ended"]
    poll_id: str
    question: str
    options: List[str]
    duration_seconds: Optional[int] = None
    winner: Optional[str] = None
    message: str


# === API payloads ===


class PollCreate(CamelModel):
    question: str
    options: List[str]
    duration_seconds: Optional[int] = Field(default=None, ge=1)


class PollVoteCreate(CamelModel):
    voter_id: str = Field(..., min_length=1)
    option_index: int


class QueuedPollResponse(CamelModel):
    position: int
    estimated_start_seconds: int
