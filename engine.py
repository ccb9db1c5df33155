# engine.py
"""
Wires the stores, the execution queue and the match scheduler together from
a config dictionary (see config/config.yaml) and an ActionExecutor.
"""

from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple

from condition_evaluator import ConditionEvaluator
from config.logging_config import get_logger
from data_models import AggregateStats
from execution_queue import ExecutionQueue
from match_scheduler import MatchScheduler
from opportunity_store import OpportunityStore
from rule_store import RuleStore
from stats import compute_aggregate_stats
from utils import ConfigError, ValidationError, engine_settings, utcnow


class AutomationEngine:
    def __init__(
        self,
        config: Dict[str, Any],
        executor: Any,
        *,
        clock: Callable[[], datetime] = utcnow,
        execution_logger: Optional[Any] = None,
        market_data_provider: Optional[Callable[[], Awaitable[Mapping[str, Any]]]] = None,
    ):
        self.log = get_logger(__name__)
        self.config = config or {}
        self.settings = engine_settings(self.config)
        self._clock = clock

        self.rule_store = RuleStore(clock=clock)
        self.opportunity_store = OpportunityStore(clock=clock)
        self.execution_queue = ExecutionQueue(
            self.rule_store,
            self.opportunity_store,
            executor,
            max_concurrent_executions=self.settings['max_concurrent_executions'],
            clock=clock,
            execution_logger=execution_logger,
            complete_opportunity_on_success=self.settings['complete_opportunity_on_success'],
            execution_timeout_s=self.settings['execution_timeout_s'],
        )
        self.scheduler = MatchScheduler(
            self.rule_store,
            self.opportunity_store,
            self.execution_queue,
            evaluator=ConditionEvaluator(self.settings['condition_mode']),
            tick_interval_s=self.settings['tick_interval_s'],
            cooldown_s=self.settings['cooldown_s'],
            clock=clock,
            market_data_provider=market_data_provider,
        )

    def seed_from_config(self) -> Tuple[int, int]:
        """
        Loads the `rules` and `opportunities` sections of the config. Seed
        opportunities may give `deadline_in_days` instead of an absolute deadline.
        """
        rules = 0
        for draft in self.config.get('rules') or []:
            try:
                self.rule_store.add(draft)
            except ValidationError as e:
                raise ConfigError(f"CRITICAL ERROR: Invalid seed rule {draft.get('name')!r}: {e}")
            rules += 1

        opportunities = 0
        for entry in self.config.get('opportunities') or []:
            entry = dict(entry)
            days = entry.pop('deadline_in_days', None)
            if days is not None:
                entry['deadline'] = self._clock() + timedelta(days=float(days))
            try:
                self.opportunity_store.add(entry)
            except ValidationError as e:
                raise ConfigError(f"CRITICAL ERROR: Invalid seed opportunity {entry.get('id')!r}: {e}")
            opportunities += 1

        self.log.info("Seeded %d rules and %d opportunities from config", rules, opportunities)
        return rules, opportunities

    async def start(self) -> None:
        self.execution_queue.start()
        self.scheduler.start()
        self.log.info("Automation engine started")

    async def stop(self, drain: bool = True) -> None:
        """Stops ticking first, then lets the queue finish (or drop) its work."""
        await self.scheduler.stop()
        await self.execution_queue.close(drain=drain)
        self.log.info("Automation engine stopped")

    def status(self) -> Dict[str, Any]:
        return {
            "scheduler": self.scheduler.status(),
            "queue": self.execution_queue.status(),
            "opportunities": len(self.opportunity_store),
            "active_rules": len(self.rule_store.list_active()),
        }

    def stats(self) -> AggregateStats:
        return compute_aggregate_stats(self.rule_store, self.opportunity_store)
