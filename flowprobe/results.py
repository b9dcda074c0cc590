# flowprobe/results.py
"""
Result records produced by a workflow run.

Every level carries `passed`. A parent's `passed` is the AND of its
children, and its duration, byte and CO2 totals are sums of its children.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional


class StepStatus(Enum):
    """Terminal outcome of a step."""
    COMPLETED = "COMPLETED"
    ERRORED = "ERRORED"
    SKIPPED_PRIOR_FAILURE = "SKIPPED_PRIOR_FAILURE"
    SKIPPED_CONDITION = "SKIPPED_CONDITION"


class StepType(Enum):
    HTTP = "http"
    GRPC = "grpc"
    SSE = "sse"
    DELAY = "delay"


def _jsonable(value: Any) -> Any:
    """Convert result payloads into JSON-friendly structures."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    return value


# ==================== Checks ====================

@dataclass(frozen=True)
class CheckResult:
    """Outcome of one matcher evaluation."""
    expected: Any
    actual: Any
    passed: bool

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(self)


@dataclass(frozen=True)
class StepCheckResult:
    """
    Check results of one step, keyed like the declared check block.
    Fields left as None were not declared and do not affect the outcome.
    """
    status: Optional[CheckResult] = None
    status_text: Optional[CheckResult] = None
    redirected: Optional[CheckResult] = None
    redirects: Optional[CheckResult] = None
    headers: Optional[Dict[str, CheckResult]] = None
    body: Optional[CheckResult] = None
    json: Optional[CheckResult] = None
    schema: Optional[CheckResult] = None
    jsonpath: Optional[Dict[str, CheckResult]] = None
    xpath: Optional[Dict[str, CheckResult]] = None
    selectors: Optional[Dict[str, CheckResult]] = None
    cookies: Optional[Dict[str, CheckResult]] = None
    captures: Optional[Dict[str, CheckResult]] = None
    messages: Optional[Dict[str, CheckResult]] = None
    sha256: Optional[CheckResult] = None
    md5: Optional[CheckResult] = None
    performance: Optional[Dict[str, CheckResult]] = None
    ssl: Optional[Dict[str, CheckResult]] = None
    size: Optional[CheckResult] = None
    request_size: Optional[CheckResult] = None
    body_size: Optional[CheckResult] = None
    co2: Optional[CheckResult] = None

    def leaves(self) -> Iterator[CheckResult]:
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if isinstance(value, dict):
                yield from value.values()
            else:
                yield value

    @property
    def passed(self) -> bool:
        return all(leaf.passed for leaf in self.leaves())

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in _jsonable(self).items() if v is not None}


# ==================== Execution units ====================

@dataclass(frozen=True)
class StepResult:
    test_id: str
    status: StepStatus
    passed: bool
    timestamp: datetime
    type: Optional[StepType] = None
    id: Optional[str] = None
    name: Optional[str] = None
    checks: Optional[StepCheckResult] = None
    captures: Optional[Dict[str, Any]] = None
    cookies: Optional[List[Dict[str, Any]]] = None
    error_message: Optional[str] = None
    duration: float = 0.0
    response_time: float = 0.0
    co2: float = 0.0
    bytes_sent: int = 0
    bytes_received: int = 0
    request: Optional[Any] = None
    response: Optional[Any] = None

    @property
    def errored(self) -> bool:
        return self.status is StepStatus.ERRORED

    @property
    def skipped(self) -> bool:
        return self.status in (StepStatus.SKIPPED_CONDITION, StepStatus.SKIPPED_PRIOR_FAILURE)

    def to_dict(self) -> Dict[str, Any]:
        data = _jsonable(self)
        data["checks"] = self.checks.to_dict() if self.checks else None
        data["errored"] = self.errored
        data["skipped"] = self.skipped
        return data


@dataclass(frozen=True)
class TestResult:
    __test__ = False

    id: str
    timestamp: datetime
    steps: List[StepResult] = field(default_factory=list)
    name: Optional[str] = None
    duration: float = 0.0

    @property
    def passed(self) -> bool:
        return all(step.passed for step in self.steps)

    @property
    def co2(self) -> float:
        return sum(step.co2 for step in self.steps)

    @property
    def bytes_sent(self) -> int:
        return sum(step.bytes_sent for step in self.steps)

    @property
    def bytes_received(self) -> int:
        return sum(step.bytes_received for step in self.steps)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "passed": self.passed,
            "timestamp": self.timestamp.isoformat(),
            "duration": self.duration,
            "co2": self.co2,
            "bytes_sent": self.bytes_sent,
            "bytes_received": self.bytes_received,
            "steps": [s.to_dict() for s in self.steps],
        }


@dataclass(frozen=True)
class WorkflowResult:
    name: str
    timestamp: datetime
    tests: List[TestResult] = field(default_factory=list)
    duration: float = 0.0
    path: Optional[str] = None

    @property
    def passed(self) -> bool:
        return all(test.passed for test in self.tests)

    @property
    def co2(self) -> float:
        return sum(test.co2 for test in self.tests)

    @property
    def bytes_sent(self) -> int:
        return sum(test.bytes_sent for test in self.tests)

    @property
    def bytes_received(self) -> int:
        return sum(test.bytes_received for test in self.tests)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "path": self.path,
            "passed": self.passed,
            "timestamp": self.timestamp.isoformat(),
            "duration": self.duration,
            "co2": self.co2,
            "bytes_sent": self.bytes_sent,
            "bytes_received": self.bytes_received,
            "tests": [t.to_dict() for t in self.tests],
        }

    def to_json(self) -> str:
        """Export to JSON string."""
        return json.dumps(self.to_dict(), indent=2, default=str)
