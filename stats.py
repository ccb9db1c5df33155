# stats.py

from decimal import Decimal
from typing import Any

from data_models import AggregateStats
from utils import parse_decimal


def compute_aggregate_stats(rule_store: Any, opportunity_store: Any) -> AggregateStats:
    """
    Builds the aggregate statistics from the current rules, opportunities and
    execution history. Nothing here is stored; call it again for fresh numbers.
    """
    rules = rule_store.list()
    history = rule_store.all_history()

    total = len(history)
    successful = sum(1 for r in history if r.success)
    gas = sum(r.gas_used for r in history if r.gas_used is not None)

    cost = Decimal("0")
    for result in history:
        value = parse_decimal(result.cost)
        if value is not None:
            cost += value

    durations = [r.duration_ms for r in history if r.duration_ms]
    most_executed = max(rules, key=lambda r: r.execution_count, default=None)

    return AggregateStats(
        total_rules=len(rules),
        active_rules=sum(1 for r in rules if r.enabled),
        total_executions=total,
        successful_executions=successful,
        failed_executions=total - successful,
        success_rate=(successful / total * 100.0) if total else 0.0,
        total_gas_used=float(gas),
        total_cost=str(cost),
        average_execution_time_ms=(sum(durations) / len(durations)) if durations else 0.0,
        average_executions_per_rule=(sum(r.execution_count for r in rules) / len(rules)) if rules else 0.0,
        most_executed_rule=most_executed.name if most_executed and most_executed.execution_count else "None",
        opportunities_by_status=opportunity_store.counts_by_status(),
    )
