#data_models.py

from dataclasses import dataclass, field, asdict, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from utils import ValidationError, parse_timestamp, utcnow


class _LookupEnum(str, Enum):
    """Enum that parses its value or member name, ignoring case, '-' and '_'."""

    @classmethod
    def parse(cls, value: Any):
        if isinstance(value, cls):
            return value
        if value is None:
            raise ValidationError(f"Missing {cls.__name__}")
        wanted = str(value).strip().lower().replace("-", "").replace("_", "")
        for member in cls:
            if wanted in (member.value.replace("_", ""), member.name.lower().replace("_", "")):
                return member
        for alias, member in getattr(cls, "_aliases", lambda: {})().items():
            if wanted == alias:
                return member
        raise ValidationError(f"Unknown {cls.__name__}: {value!r}")


class TriggerKind(_LookupEnum):
    NEW_OPPORTUNITY = "new_airdrop"
    PRICE_THRESHOLD = "price_threshold"
    VOLUME_SPIKE = "volume_spike"
    TIME_BASED = "time_based"

    @classmethod
    def _aliases(cls):
        return {"opportunity": cls.NEW_OPPORTUNITY}


class ActionKind(_LookupEnum):
    BRIDGE = "bridge"
    SWAP = "swap"
    STAKE = "stake"
    BRIDGE_AND_SWAP = "bridge_and_swap"
    INTERACT_CONTRACT = "interact_contract"


class OpportunityStatus(_LookupEnum):
    ACTIVE = "active"
    EXPIRED = "expired"
    COMPLETED = "completed"


class ExecutionStatus(_LookupEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one ActionExecutor call. Immutable once created."""
    success: bool
    transaction_ref: Optional[str] = None
    gas_used: Optional[float] = None
    cost: Optional[str] = None
    duration_ms: float = 0.0
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)
    rule_id: Optional[str] = None
    opportunity_id: Optional[str] = None
    template_id: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], **overrides) -> "ExecutionResult":
        """
        Coerces the JSON-shaped executor contract
        ({success, transactionRef, gasUsed, cost, durationMs, error}) into a result.
        """
        if not isinstance(data, Mapping) or "success" not in data:
            raise ValueError(f"Executor returned an unrecognised result: {data!r}")
        gas = data.get("gasUsed", data.get("gas_used"))
        duration = data.get("durationMs", data.get("duration_ms", data.get("executionTime")))
        cost = data.get("cost")
        values = {
            "success": bool(data["success"]),
            "transaction_ref": data.get("transactionRef", data.get("transaction_ref", data.get("txHash"))),
            "gas_used": float(gas) if gas is not None else None,
            "cost": str(cost) if cost is not None else None,
            "duration_ms": float(duration) if duration is not None else 0.0,
            "error": data.get("error"),
        }
        if data.get("timestamp") is not None:
            values["timestamp"] = parse_timestamp(data["timestamp"])
        values.update(overrides)
        return cls(**values)

    def with_context(self, **changes) -> "ExecutionResult":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass
class Rule:
    """A stored trigger + condition + action definition."""
    id: str
    name: str
    trigger: TriggerKind
    condition: str
    action: ActionKind
    amount: str = ""
    chain: str = ""
    enabled: bool = True
    action_template_id: str = ""
    action_parameters: Dict[str, Any] = field(default_factory=dict)
    execution_count: int = 0
    last_executed_at: Optional[datetime] = None
    last_result: Optional[ExecutionResult] = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "trigger": self.trigger.value,
            "condition": self.condition,
            "action": self.action.value,
            "amount": self.amount,
            "chain": self.chain,
            "enabled": self.enabled,
            "action_template_id": self.action_template_id,
            "action_parameters": dict(self.action_parameters),
            "execution_count": self.execution_count,
            "last_executed_at": self.last_executed_at.isoformat() if self.last_executed_at else None,
            "last_result": self.last_result.to_dict() if self.last_result else None,
        }


_OPPORTUNITY_KEYS = {
    "estimatedValue": "estimated_value",
    "gasCost": "gas_cost",
    "timeRequired": "time_required",
    "executionStatus": "execution_status",
}


@dataclass
class Opportunity:
    """An externally detected airdrop opportunity that rules may react to."""
    id: str
    name: str
    chain: str
    project: str = ""
    requirements: List[str] = field(default_factory=list)
    estimated_value: str = ""
    deadline: Optional[datetime] = None
    status: OpportunityStatus = OpportunityStatus.ACTIVE
    difficulty: Optional[str] = None
    gas_cost: Optional[str] = None
    time_required: Optional[str] = None
    execution_status: Optional[ExecutionStatus] = None
    last_result: Optional[ExecutionResult] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Opportunity":
        """Builds an opportunity from a feed/config mapping (camelCase or snake_case keys)."""
        values = {_OPPORTUNITY_KEYS.get(k, k): v for k, v in dict(data).items()}
        for required in ("id", "name", "chain"):
            if not values.get(required):
                raise ValidationError(f"Opportunity is missing required field '{required}'")
        known = set(cls.__dataclass_fields__)
        unknown = set(values) - known
        if unknown:
            raise ValidationError(f"Unknown opportunity field(s): {', '.join(sorted(unknown))}")
        values["deadline"] = parse_timestamp(values.get("deadline"))
        values["status"] = OpportunityStatus.parse(values.get("status") or OpportunityStatus.ACTIVE)
        if values.get("execution_status") is not None:
            values["execution_status"] = ExecutionStatus.parse(values["execution_status"])
        values["requirements"] = list(values.get("requirements") or [])
        return cls(**values)

    def facts(self) -> Dict[str, Any]:
        """Fact context used by NewOpportunity conditions."""
        return {
            "id": self.id,
            "name": self.name,
            "chain": self.chain,
            "project": self.project,
            "requirements": list(self.requirements),
            "estimatedValue": self.estimated_value,
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "status": self.status.value,
            "difficulty": self.difficulty,
            "gasCost": self.gas_cost,
            "timeRequired": self.time_required,
        }


@dataclass(frozen=True)
class Match:
    """A (rule, opportunity) pair queued for execution. Lives only inside the queue."""
    id: str
    rule_id: str
    opportunity_id: Optional[str] = None
    enqueued_at: datetime = field(default_factory=utcnow)
    facts: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def key(self) -> Tuple[str, Optional[str]]:
        return (self.rule_id, self.opportunity_id)


@dataclass
class AggregateStats:
    """Projection over rules, opportunities and execution history."""
    total_rules: int = 0
    active_rules: int = 0
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    success_rate: float = 0.0
    total_gas_used: float = 0.0
    total_cost: str = "0"
    average_execution_time_ms: float = 0.0
    average_executions_per_rule: float = 0.0
    most_executed_rule: str = "None"
    opportunities_by_status: Dict[str, int] = field(default_factory=dict)

    @property
    def total_opportunities(self) -> int:
        return sum(self.opportunities_by_status.values())

    def to_dict(self):
        data = asdict(self)
        data["total_opportunities"] = self.total_opportunities
        return data
