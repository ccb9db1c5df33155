# action_executor.py

import asyncio
import time
from typing import Any, Dict, Mapping, Protocol, Union, runtime_checkable

from config.logging_config import get_logger
from data_models import ExecutionResult


@runtime_checkable
class ActionExecutor(Protocol):
    """
    The engine's only external capability: run an action template with parameters.

    Implementations perform the side effect (chain transaction, HTTP call,
    simulation) and report it as an ExecutionResult, or as a mapping shaped like
    {success, transactionRef, gasUsed, cost, durationMs, error}. Failures should
    come back as success=False rather than exceptions, and every call must settle.
    """

    async def execute(self, template_id: str, parameters: Mapping[str, Any]) -> Union[ExecutionResult, Dict[str, Any]]:
        ...


class DryRunActionExecutor:
    """
    Simulates every action without touching a chain. Each call logs the template
    and parameters, waits `simulated_latency_s` and reports success with no
    transaction reference.
    """

    def __init__(self, simulated_latency_s: float = 0.0):
        self.log = get_logger(__name__)
        self.simulated_latency_s = max(0.0, float(simulated_latency_s))
        self.calls = 0

    async def execute(self, template_id: str, parameters: Mapping[str, Any]) -> ExecutionResult:
        self.calls += 1
        started = time.perf_counter()
        rule_cfg = parameters.get("ruleConfig") or {}
        self.log.info("[DRY RUN] %s: action=%s amount=%s chain=%s",
                      template_id, rule_cfg.get("action"), rule_cfg.get("amount"), rule_cfg.get("chain"))
        if self.simulated_latency_s:
            await asyncio.sleep(self.simulated_latency_s)
        return ExecutionResult(
            success=True,
            duration_ms=(time.perf_counter() - started) * 1000.0,
            template_id=template_id,
        )
