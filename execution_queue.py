# execution_queue.py

import asyncio
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Tuple

from action_templates import build_runtime_parameters, missing_parameters
from config.logging_config import get_logger
from data_models import ExecutionResult, ExecutionStatus, Match, OpportunityStatus
from utils import utcnow


class ExecutionQueue:
    """
    Bounded-concurrency FIFO of matches.

    `max_concurrent_executions` worker tasks pull matches off an asyncio.Queue and
    run them through the ActionExecutor, so at most that many executor calls are
    ever in flight. A (rule, opportunity) key stays reserved from enqueue until its
    result has been applied, which is what keeps duplicate matches out.
    Failed executions are recorded, never retried.
    """

    def __init__(
        self,
        rule_store: Any,
        opportunity_store: Any,
        executor: Any,
        *,
        max_concurrent_executions: int = 5,
        clock: Callable[[], datetime] = utcnow,
        execution_logger: Optional[Any] = None,
        complete_opportunity_on_success: bool = False,
        execution_timeout_s: Optional[float] = None,
    ):
        if int(max_concurrent_executions) < 1:
            raise ValueError("max_concurrent_executions must be at least 1")
        self.log = get_logger(__name__)
        self.rule_store = rule_store
        self.opportunity_store = opportunity_store
        self.executor = executor
        self.max_concurrent_executions = int(max_concurrent_executions)
        self.execution_logger = execution_logger
        self.complete_opportunity_on_success = bool(complete_opportunity_on_success)
        self.execution_timeout_s = float(execution_timeout_s) if execution_timeout_s else None
        self._clock = clock

        self._queue: "asyncio.Queue[Match]" = asyncio.Queue()
        self._pending_keys: Set[Tuple[str, Optional[str]]] = set()
        # opportunity id -> execution status to restore if its pending matches never run
        self._prior_status: Dict[str, Optional[ExecutionStatus]] = {}
        self._workers: List[asyncio.Task] = []

        # Diagnostics
        self.in_flight = 0
        self.peak_in_flight = 0
        self.succeeded = 0
        self.failed = 0
        self.skipped = 0

    # -------- Producer side --------

    def is_pending(self, key: Tuple[str, Optional[str]]) -> bool:
        return key in self._pending_keys

    def _has_pending(self, opportunity_id: str, exclude: Optional[Tuple[str, Optional[str]]] = None) -> bool:
        return any(key[1] == opportunity_id and key != exclude for key in self._pending_keys)

    def enqueue(self, match: Match) -> bool:
        """Queues a match. Returns False if the same pair is already queued or executing."""
        if match.key in self._pending_keys:
            self.log.debug("Duplicate match ignored for rule=%s opportunity=%s", *match.key)
            return False
        if match.opportunity_id is not None and not self._has_pending(match.opportunity_id):
            opportunity = self.opportunity_store.get(match.opportunity_id)
            self._prior_status[match.opportunity_id] = opportunity.execution_status if opportunity else None
        self._pending_keys.add(match.key)
        self._queue.put_nowait(match)
        if match.opportunity_id is not None:
            self.opportunity_store.set_execution_status(match.opportunity_id, ExecutionStatus.PENDING)
        self.log.info("Queued %s (rule=%s, opportunity=%s, queue length=%d)",
                      match.id, match.rule_id, match.opportunity_id, self._queue.qsize())
        return True

    def __len__(self):
        return self._queue.qsize()

    # -------- Lifecycle --------

    @property
    def running(self) -> bool:
        return any(not w.done() for w in self._workers)

    def start(self) -> None:
        """Spawns the worker tasks. Must be called from inside a running event loop."""
        if self.running:
            self.log.warning("Execution queue already running; ignoring start()")
            return
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"execution-worker-{i}")
            for i in range(self.max_concurrent_executions)
        ]
        self.log.info("Execution queue started with %d workers", self.max_concurrent_executions)

    async def join(self) -> None:
        """Waits until every queued match has been executed and its result applied."""
        await self._queue.join()

    async def close(self, drain: bool = True) -> None:
        """
        Stops the workers. With drain=True queued matches are executed first;
        otherwise they are discarded. In-flight executions always complete.
        """
        if not drain:
            dropped = 0
            while not self._queue.empty():
                match = self._queue.get_nowait()
                self._restore_status(match)
                self._release(match)
                dropped += 1
            if dropped:
                self.log.warning("Discarded %d queued matches on close", dropped)
        if self.running:
            await self.join()
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self.log.info("Execution queue stopped")

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "queued": self._queue.qsize(),
            "in_flight": self.in_flight,
            "max_concurrent_executions": self.max_concurrent_executions,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
        }

    # -------- Consumer side --------

    async def _worker(self, index: int) -> None:
        while True:
            match = await self._queue.get()
            try:
                await self._process(match)
            except Exception as e:
                self.log.exception("Worker %d failed while processing %s: %s", index, match.id, e)
            finally:
                self._release(match)

    def _release(self, match: Match) -> None:
        self._pending_keys.discard(match.key)
        if match.opportunity_id is not None and not self._has_pending(match.opportunity_id):
            self._prior_status.pop(match.opportunity_id, None)
        self._queue.task_done()

    def _restore_status(self, match: Match) -> None:
        """Undoes the PENDING mark of a match that will never execute."""
        if match.opportunity_id is None or self._has_pending(match.opportunity_id, exclude=match.key):
            return
        self.opportunity_store.set_execution_status(
            match.opportunity_id, self._prior_status.get(match.opportunity_id)
        )

    async def _process(self, match: Match) -> None:
        rule = self.rule_store.get(match.rule_id)
        if rule is None or not rule.enabled:
            self.skipped += 1
            self.log.info("Skipping %s: rule %s is deleted or disabled", match.id, match.rule_id)
            self._restore_status(match)
            return

        opportunity = None
        if match.opportunity_id is not None:
            opportunity = self.opportunity_store.get(match.opportunity_id)
            if opportunity is None or opportunity.status is not OpportunityStatus.ACTIVE:
                self.skipped += 1
                self.log.info("Skipping %s: opportunity %s is no longer active", match.id, match.opportunity_id)
                self._restore_status(match)
                return
            self.opportunity_store.set_execution_status(opportunity.id, ExecutionStatus.RUNNING)

        params = build_runtime_parameters(rule, opportunity, match.facts)
        missing = missing_parameters(rule.action_template_id, params)
        if missing:
            result = ExecutionResult(success=False, error=f"Missing required parameter(s): {', '.join(missing)}")
        else:
            self.log.execution("Executing %s: rule '%s' -> %s", match.id, rule.name, rule.action_template_id)
            result = await self._call_executor(rule.action_template_id, params)

        result = result.with_context(
            rule_id=rule.id,
            opportunity_id=match.opportunity_id,
            template_id=rule.action_template_id,
            timestamp=self._clock(),
        )
        self._apply_result(rule.name, result)

    async def _call_executor(self, template_id: str, params: Mapping[str, Any]) -> ExecutionResult:
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        started = time.perf_counter()
        try:
            call = self.executor.execute(template_id, params)
            if self.execution_timeout_s:
                raw = await asyncio.wait_for(call, timeout=self.execution_timeout_s)
            else:
                raw = await call
            result = raw if isinstance(raw, ExecutionResult) else ExecutionResult.from_mapping(raw)
        except asyncio.TimeoutError:
            result = ExecutionResult(success=False, error=f"Execution timed out after {self.execution_timeout_s}s")
        except Exception as e:
            self.log.error("ActionExecutor raised for %s: %s", template_id, e, exc_info=True)
            result = ExecutionResult(success=False, error=str(e) or e.__class__.__name__)
        finally:
            self.in_flight -= 1

        if not result.duration_ms:
            result = result.with_context(duration_ms=(time.perf_counter() - started) * 1000.0)
        return result

    def _apply_result(self, rule_name: str, result: ExecutionResult) -> None:
        """Writes one result back to the rule, the opportunity and the execution log."""
        self.rule_store.record_execution(result.rule_id, result)

        if result.opportunity_id is not None:
            status = ExecutionStatus.COMPLETED if result.success else ExecutionStatus.FAILED
            self.opportunity_store.set_execution_status(result.opportunity_id, status, result)
            if result.opportunity_id in self._prior_status:
                self._prior_status[result.opportunity_id] = status
            if result.success and self.complete_opportunity_on_success:
                self.opportunity_store.mark_completed(result.opportunity_id)

        if result.success:
            self.succeeded += 1
            self.log.success("Rule '%s' executed: tx=%s gas=%s cost=%s (%.0f ms)", rule_name,
                             result.transaction_ref, result.gas_used, result.cost, result.duration_ms)
        else:
            self.failed += 1
            self.log.error("Rule '%s' execution failed: %s", rule_name, result.error)

        if self.execution_logger is not None:
            self.execution_logger.log_execution(result)
