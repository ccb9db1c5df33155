# rule_store.py

import copy
import threading
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional

from action_templates import map_action
from condition_evaluator import validate_condition
from config.logging_config import get_logger
from data_models import ActionKind, ExecutionResult, Rule, TriggerKind
from utils import ConditionError, ValidationError, utcnow

REQUIRED_FIELDS = ("name", "trigger", "action")
UPDATABLE_FIELDS = {"name", "trigger", "condition", "action", "amount", "chain", "enabled", "action_parameters"}
REMAP_FIELDS = {"action", "chain", "amount"}


class RuleStore:
    """
    In-memory CRUD over rule definitions. Owns rule lifecycle, execution
    counters and the append-only execution history of every rule.

    All reads return copies, and record_execution() applies the counter,
    timestamp, last result and history append under one lock, so no reader
    can observe a half-updated rule.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.log = get_logger(__name__)
        self._clock = clock
        self._rules: Dict[str, Rule] = {}
        self._history: Dict[str, List[ExecutionResult]] = {}
        self._lock = threading.RLock()

    # -------- CRUD --------

    def add(self, draft: Mapping[str, Any]) -> Rule:
        """Validates a rule draft, assigns a fresh id and zero counters, and stores it."""
        draft = dict(draft or {})
        for name in REQUIRED_FIELDS:
            if draft.get(name) in (None, ""):
                raise ValidationError(f"Rule is missing required field '{name}'")

        unknown = set(draft) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown rule field(s): {', '.join(sorted(unknown))}")

        trigger = TriggerKind.parse(draft["trigger"])
        action = ActionKind.parse(draft["action"])
        condition = str(draft.get("condition") or "")
        self._check_condition(condition)

        amount = str(draft.get("amount") or "")
        chain = str(draft.get("chain") or "")
        template_id, params = map_action(action, chain=chain, amount=amount)
        params.update(self._check_parameters(draft.get("action_parameters")))

        rule = Rule(
            id=f"rule_{uuid.uuid4().hex[:12]}",
            name=str(draft["name"]),
            trigger=trigger,
            condition=condition,
            action=action,
            amount=amount,
            chain=chain,
            enabled=bool(draft.get("enabled", True)),
            action_template_id=template_id,
            action_parameters=params,
            created_at=self._clock(),
        )
        with self._lock:
            self._rules[rule.id] = rule
            self._history[rule.id] = []
        self.log.info("Added rule '%s' (%s, trigger=%s, action=%s)", rule.name, rule.id, trigger.value, action.value)
        return copy.deepcopy(rule)

    def get(self, rule_id: str) -> Optional[Rule]:
        with self._lock:
            rule = self._rules.get(rule_id)
            return copy.deepcopy(rule) if rule else None

    def list(self) -> List[Rule]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._rules.values()]

    def list_active(self) -> List[Rule]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._rules.values() if r.enabled]

    def update(self, rule_id: str, **changes) -> bool:
        """
        Applies a partial update. Returns False for an unknown id.
        Touching action, chain or amount re-derives the template defaults from the
        updated rule. Parameters the user set explicitly survive when the action
        kind stays the same and are dropped when it changes. Parameters passed in
        this update are applied last.
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Field(s) cannot be updated: {', '.join(sorted(unknown))}")

        with self._lock:
            current = self._rules.get(rule_id)
            if current is None:
                self.log.warning("Update ignored: rule %s not found", rule_id)
                return False

            updated = copy.deepcopy(current)
            if "name" in changes:
                if not changes["name"]:
                    raise ValidationError("Rule name cannot be empty")
                updated.name = str(changes["name"])
            if "trigger" in changes:
                updated.trigger = TriggerKind.parse(changes["trigger"])
            if "condition" in changes:
                self._check_condition(str(changes["condition"] or ""))
                updated.condition = str(changes["condition"] or "")
            if "amount" in changes:
                updated.amount = str(changes["amount"] or "")
            if "chain" in changes:
                updated.chain = str(changes["chain"] or "")
            if "enabled" in changes:
                updated.enabled = bool(changes["enabled"])

            if REMAP_FIELDS & set(changes):
                new_action = ActionKind.parse(changes.get("action", current.action))
                template_id, params = map_action(new_action, chain=updated.chain, amount=updated.amount)
                if new_action is current.action:
                    params.update(self._overrides(current))
                updated.action = new_action
                updated.action_template_id, updated.action_parameters = template_id, params
            if "action_parameters" in changes:
                updated.action_parameters.update(self._check_parameters(changes["action_parameters"]))

            self._rules[rule_id] = updated
        self.log.info("Updated rule %s: %s", rule_id, ", ".join(sorted(changes)))
        return True

    def remove(self, rule_id: str) -> bool:
        """Deletes the rule together with its execution history."""
        with self._lock:
            if rule_id not in self._rules:
                return False
            del self._rules[rule_id]
            self._history.pop(rule_id, None)
        self.log.info("Deleted rule %s", rule_id)
        return True

    def __len__(self):
        with self._lock:
            return len(self._rules)

    # -------- Execution bookkeeping --------

    def record_execution(self, rule_id: str, result: ExecutionResult) -> Optional[Rule]:
        """
        Applies one execution attempt: counter, last_executed_at, last_result and
        history append happen together. Returns None if the rule was deleted meanwhile.
        """
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                self.log.warning("Execution result dropped: rule %s no longer exists", rule_id)
                return None
            rule.execution_count += 1
            rule.last_executed_at = result.timestamp
            rule.last_result = result
            self._history.setdefault(rule_id, []).append(result)
            return copy.deepcopy(rule)

    def history(self, rule_id: str) -> List[ExecutionResult]:
        with self._lock:
            return list(self._history.get(rule_id, []))

    def all_history(self) -> List[ExecutionResult]:
        with self._lock:
            return [result for results in self._history.values() for result in results]

    @staticmethod
    def is_cooling_down(rule: Rule, now: datetime, window_s: float) -> bool:
        """True while the rule's last execution is younger than the cool-down window."""
        if rule.last_executed_at is None or window_s <= 0:
            return False
        return now - rule.last_executed_at < timedelta(seconds=window_s)

    # -------- Validation helpers --------

    @staticmethod
    def _check_condition(condition: str) -> None:
        try:
            validate_condition(condition)
        except ConditionError as e:
            raise ValidationError(f"Invalid rule condition: {e}") from e

    @staticmethod
    def _overrides(rule: Rule) -> Dict[str, Any]:
        """Parameters of the rule that differ from its template defaults."""
        _, defaults = map_action(rule.action, chain=rule.chain, amount=rule.amount)
        return {
            key: value for key, value in rule.action_parameters.items()
            if key not in defaults or defaults[key] != value
        }

    @staticmethod
    def _check_parameters(params: Any) -> Dict[str, Any]:
        if params is None:
            return {}
        if not isinstance(params, Mapping):
            raise ValidationError("action_parameters must be a mapping")
        return dict(params)
