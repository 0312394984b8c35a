"""
Job taxonomy — payload union and the queue's job record.

Wire shapes (camelCase, as stored on the queue):
  {"type": "groupExpire",    "groupId": "..."}
  {"type": "reactionExpire", "userId": "...", "venueId": "...", "emoji": "..."}
  {"type": "pingExpire",     "pingId": "..."}

Adding a job type means adding a payload model here, registering it in
PAYLOAD_TYPES and giving the worker a handler for it; the worker refuses to
start when a payload type has no handler.
"""
from __future__ import annotations

import json
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


def now_ms() -> int:
    return int(time.time() * 1000)


# ──────────────────────────────────────────────────────────────
#  Payloads
# ──────────────────────────────────────────────────────────────

class JobType(str, Enum):
    GROUP_EXPIRE = "groupExpire"
    REACTION_EXPIRE = "reactionExpire"
    PING_EXPIRE = "pingExpire"


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class GroupExpireJob(_Payload):
    type: Literal["groupExpire"] = "groupExpire"
    group_id: str = Field(alias="groupId")


class ReactionExpireJob(_Payload):
    type: Literal["reactionExpire"] = "reactionExpire"
    user_id: str = Field(alias="userId")
    venue_id: str = Field(alias="venueId")
    emoji: str


class PingExpireJob(_Payload):
    type: Literal["pingExpire"] = "pingExpire"
    ping_id: str = Field(alias="pingId")


JobPayload = Annotated[
    Union[GroupExpireJob, ReactionExpireJob, PingExpireJob],
    Field(discriminator="type"),
]

PAYLOAD_TYPES: dict[JobType, type] = {
    JobType.GROUP_EXPIRE: GroupExpireJob,
    JobType.REACTION_EXPIRE: ReactionExpireJob,
    JobType.PING_EXPIRE: PingExpireJob,
}

_payload_adapter = TypeAdapter(JobPayload)


def parse_payload(data: dict[str, Any]) -> Optional[JobPayload]:
    """
    Parse a wire payload into its model.
    Returns None for a type tag this build does not know about; raises
    pydantic.ValidationError for a known tag with malformed fields.
    """
    if data.get("type") not in {t.value for t in JobType}:
        return None
    return _payload_adapter.validate_python(data)


# ──────────────────────────────────────────────────────────────
#  Job record
# ──────────────────────────────────────────────────────────────

class JobState:
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    REMOVED = "removed"


@dataclass
class Job:
    """A scheduled unit of work. Immutable once enqueued apart from its state."""
    name: str
    payload: dict[str, Any] = field(default_factory=dict)
    not_before: int = 0          # epoch milliseconds
    seq: int = 0                 # enqueue order, breaks not_before ties
    state: str = JobState.WAITING
    created_at: str = ""
    finished_at: str = ""
    error: str = ""
    job_id: str = ""

    def __post_init__(self):
        if not self.job_id:
            self.job_id = f"job_{uuid.uuid4().hex[:12]}"
        if not self.created_at:
            self.created_at = datetime.now(timezone.utc).isoformat()

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.not_before, self.seq)

    def to_dict(self) -> dict[str, str]:
        d = asdict(self)
        d["payload"] = json.dumps(d["payload"], ensure_ascii=False)
        d["not_before"] = str(d["not_before"])
        d["seq"] = str(d["seq"])
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Job:
        data = dict(data)  # copy
        if isinstance(data.get("payload"), str):
            data["payload"] = json.loads(data["payload"])
        data["not_before"] = int(data.get("not_before", 0))
        data["seq"] = int(data.get("seq", 0))
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})
