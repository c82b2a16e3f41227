"""
Job types for the analytics queue.

Payload wire format (stored as JSON in the job hash):
    {"companyId": str, "type": str, "userId": str, "priority": int?}

where type is one of the five view names, "all", or "recurring".
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from finboard.analytics.types import ViewType


# Job types beyond the single views
ALL_VIEWS = "all"
RECURRING = "recurring"

JOB_TYPES = tuple(v.value for v in ViewType) + (ALL_VIEWS, RECURRING)

# Job names
CALCULATE_ANALYTICS = "calculate-analytics"
RECURRING_JOB_NAME = "analytics-recurring"


class JobPriority(Enum):
    """
    Named priority classes.

    Converted to queue integers only inside RedisJobQueue.
    """
    LOW_BACKGROUND = "low_background"
    NORMAL_MUTATION_TRIGGERED = "normal_mutation_triggered"
    USER_REQUESTED = "user_requested"


class JobStatus(Enum):
    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class AnalyticsJobData:
    """Typed view of an analytics job payload."""
    company_id: Optional[str]
    type: str
    user_id: str = "system"
    priority: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        payload = {
            "companyId": self.company_id,
            "type": self.type,
            "userId": self.user_id,
        }
        if self.priority is not None:
            payload["priority"] = self.priority
        return payload

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "AnalyticsJobData":
        return cls(
            company_id=payload.get("companyId"),
            type=payload.get("type", ALL_VIEWS),
            user_id=payload.get("userId", "system"),
            priority=payload.get("priority"),
        )


@dataclass
class Job:
    """A queued unit of work as stored in Redis."""
    id: str
    name: str
    data: Dict[str, Any]
    priority: int
    max_attempts: int = 3
    backoff_ms: int = 2000
    attempts_made: int = 0
    status: JobStatus = JobStatus.WAITING
    created_at: int = 0
    processed_at: Optional[int] = None
    finished_at: Optional[int] = None
    failed_reason: Optional[str] = None
    result: Any = None

    def to_hash(self) -> Dict[str, str]:
        mapping = {
            "name": self.name,
            "data": json.dumps(self.data),
            "priority": str(self.priority),
            "max_attempts": str(self.max_attempts),
            "backoff_ms": str(self.backoff_ms),
            "attempts_made": str(self.attempts_made),
            "status": self.status.value,
            "created_at": str(self.created_at),
            "processed_at": self.processed_at,
            "finished_at": self.finished_at,
            "failed_reason": self.failed_reason,
            "result": json.dumps(self.result) if self.result is not None else None,
        }
        return {k: str(v) for k, v in mapping.items() if v is not None}

    @classmethod
    def from_hash(cls, job_id: str, raw: Dict[str, str]) -> "Job":
        def opt_int(name: str) -> Optional[int]:
            value = raw.get(name)
            return int(value) if value not in (None, "") else None

        return cls(
            id=str(job_id),
            name=raw.get("name", ""),
            data=json.loads(raw.get("data") or "{}"),
            priority=int(raw.get("priority", 0)),
            max_attempts=int(raw.get("max_attempts", 1)),
            backoff_ms=int(raw.get("backoff_ms", 0)),
            attempts_made=int(raw.get("attempts_made", 0)),
            status=JobStatus(raw.get("status", JobStatus.WAITING.value)),
            created_at=int(raw.get("created_at", 0)),
            processed_at=opt_int("processed_at"),
            finished_at=opt_int("finished_at"),
            failed_reason=raw.get("failed_reason"),
            result=json.loads(raw["result"]) if raw.get("result") else None,
        )
