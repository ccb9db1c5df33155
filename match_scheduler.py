# match_scheduler.py

import asyncio
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from condition_evaluator import ConditionEvaluator
from config.logging_config import get_logger
from data_models import Match, Rule, TriggerKind
from utils import ConditionError, utcnow

MARKET_TRIGGERS = (TriggerKind.PRICE_THRESHOLD, TriggerKind.VOLUME_SPIKE)


class SchedulerState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"


def time_facts(now: datetime) -> Dict[str, Any]:
    """Wall-clock facts for time_based rules. dayOfWeek counts from 0 = Sunday."""
    return {
        "hour": now.hour,
        "minute": now.minute,
        "day": now.day,
        "dayOfMonth": now.day,
        "dayOfWeek": now.isoweekday() % 7,
        "week": now.day // 7,
        "month": now.month,
    }


class MatchScheduler:
    """
    Periodic matcher. Every tick it expires stale opportunities, cross-joins the
    active opportunities with the enabled NewOpportunity rules, evaluates time
    and market rules against their own facts, and pushes matches onto the
    ExecutionQueue. It never executes anything itself, so a slow executor
    cannot hold up a tick.
    """
    def __init__(
        self,
        rule_store: Any,
        opportunity_store: Any,
        execution_queue: Any,
        *,
        evaluator: Optional[ConditionEvaluator] = None,
        tick_interval_s: float = 30.0,
        cooldown_s: float = 3600.0,
        clock: Callable[[], datetime] = utcnow,
        market_data_provider: Optional[Callable[[], Awaitable[Mapping[str, Any]]]] = None,
    ):
        self.log = get_logger(__name__)
        self.rule_store = rule_store
        self.opportunity_store = opportunity_store
        self.execution_queue = execution_queue
        self.evaluator = evaluator or ConditionEvaluator()
        self.tick_interval_s = float(tick_interval_s)
        self.cooldown_s = float(cooldown_s)
        self.market_data_provider = market_data_provider
        self._clock = clock

        # --- Scheduler State ---
        self.state = SchedulerState.STOPPED
        self._task: Optional[asyncio.Task] = None
        self.tick_count = 0
        self.last_tick_at: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.matches_produced = 0
        self.cooldown_skips = 0

    # -------- Lifecycle --------

    def start(self) -> None:
        """Stopped -> Running. Must be called from inside a running event loop."""
        if self.state is SchedulerState.RUNNING:
            self.log.warning("Scheduler already running; ignoring start()")
            return
        self.state = SchedulerState.RUNNING
        self._task = asyncio.create_task(self._run(), name="match-scheduler")

    async def stop(self) -> None:
        """
        Running -> Stopped. Future ticks are cancelled at once; executions already
        handed to the queue are not touched.
        """
        if self.state is SchedulerState.STOPPED and self._task is None:
            self.log.warning("Scheduler not running; ignoring stop()")
            return
        self.state = SchedulerState.STOPPED
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self.log.info("Scheduler stopped after %d ticks", self.tick_count)

    async def _run(self):
        """The main loop: tick, then sleep for the configured interval."""
        self.log.info("Starting match scheduler (interval=%.1fs, cool-down=%.0fs)...",
                      self.tick_interval_s, self.cooldown_s)
        try:
            while self.state is SchedulerState.RUNNING:
                await self.tick()
                await asyncio.sleep(self.tick_interval_s)
        except asyncio.CancelledError:
            self.log.info("Scheduler task was cancelled.")
        finally:
            self.state = SchedulerState.STOPPED

    # -------- Matching --------

    async def tick(self) -> int:
        """
        Runs one matching cycle and returns the number of matches enqueued.
        Errors are logged and kept in `last_error`; they never escape the tick.
        """
        now = self._clock()
        self.tick_count += 1
        self.last_tick_at = now
        self.log.info("--- Starting match cycle #%d ---", self.tick_count)

        enqueued = 0
        try:
            expired = self.opportunity_store.expire_stale(now)
            if expired:
                self.log.info("%d opportunities expired", expired)

            eligible = [rule for rule in self.rule_store.list_active() if not self._cooling_down(rule, now)]
            enqueued += self._match_opportunities(eligible, now)
            enqueued += self._match_time_rules(eligible, now)
            enqueued += await self._match_market_rules(eligible, now)
            self.last_error = None
        except Exception as e:
            self.last_error = str(e)
            self.log.error("An error occurred in the match cycle: %s", e, exc_info=True)

        self.matches_produced += enqueued
        if enqueued:
            self.log.info("Match cycle #%d queued %d executions.", self.tick_count, enqueued)
        else:
            self.log.info("No new matches in this cycle.")
        return enqueued

    def _cooling_down(self, rule: Rule, now: datetime) -> bool:
        if self.rule_store.is_cooling_down(rule, now, self.cooldown_s):
            self.cooldown_skips += 1
            self.log.debug("Rule '%s' is cooling down (last executed %s)", rule.name, rule.last_executed_at)
            return True
        return False

    def _match_opportunities(self, rules: List[Rule], now: datetime) -> int:
        rules = [r for r in rules if r.trigger is TriggerKind.NEW_OPPORTUNITY]
        if not rules:
            return 0
        count = 0
        for opportunity in self.opportunity_store.list_active():
            context = {"airdropOpportunity": opportunity.facts()}
            for rule in rules:
                if self._try_match(rule, context, now, opportunity.id):
                    self.log.info("Opportunity matches rule: %s -> %s", opportunity.name, rule.name)
                    count += 1
        return count

    def _match_time_rules(self, rules: List[Rule], now: datetime) -> int:
        rules = [r for r in rules if r.trigger is TriggerKind.TIME_BASED]
        if not rules:
            return 0
        context = {"timeData": time_facts(now)}
        return sum(1 for rule in rules if self._try_match(rule, context, now))

    async def _match_market_rules(self, rules: List[Rule], now: datetime) -> int:
        rules = [r for r in rules if r.trigger in MARKET_TRIGGERS]
        if not rules:
            return 0
        if self.market_data_provider is None:
            self.log.debug("%d market rules skipped: no market data provider configured", len(rules))
            return 0
        try:
            market = dict(await self.market_data_provider())
        except Exception as e:
            self.log.warning("Could not fetch market data: %s", e)
            return 0
        context = {"marketData": market}
        return sum(1 for rule in rules if self._try_match(rule, context, now))

    def _try_match(self, rule: Rule, context: Mapping[str, Any], now: datetime,
                   opportunity_id: Optional[str] = None) -> bool:
        key = (rule.id, opportunity_id)
        if self.execution_queue.is_pending(key):
            return False
        try:
            matched = self.evaluator.evaluate(rule.condition, rule.trigger, context)
        except ConditionError as e:
            self.log.warning("Condition of rule '%s' could not be evaluated: %s", rule.name, e)
            return False
        except Exception as e:
            self.log.warning("Evaluating rule '%s' failed: %s", rule.name, e, exc_info=True)
            return False
        if not matched:
            return False
        match = Match(
            id=f"exec_{uuid.uuid4().hex[:12]}",
            rule_id=rule.id,
            opportunity_id=opportunity_id,
            enqueued_at=now,
            facts=dict(context),
        )
        return self.execution_queue.enqueue(match)

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "tick_interval_s": self.tick_interval_s,
            "tick_count": self.tick_count,
            "last_tick_at": self.last_tick_at.isoformat() if self.last_tick_at else None,
            "matches_produced": self.matches_produced,
            "cooldown_skips": self.cooldown_skips,
            "last_error": self.last_error,
        }
