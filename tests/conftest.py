# tests/conftest.py

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from config import logging_config
logging_config.setup_custom_log_levels()

from execution_queue import ExecutionQueue
from match_scheduler import MatchScheduler
from opportunity_store import OpportunityStore
from rule_store import RuleStore


class FakeClock:
    """A manually advanced clock; call it to read the current time."""
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class StubExecutor:
    """ActionExecutor test double that records calls and tracks concurrency."""
    def __init__(self, result=None, delay_s: float = 0.0, raises: Exception = None):
        self.result = result if result is not None else {"success": True, "transactionRef": "0xabc"}
        self.delay_s = delay_s
        self.raises = raises
        self.calls = []
        self.in_flight = 0
        self.peak_in_flight = 0

    async def execute(self, template_id, parameters):
        self.calls.append((template_id, dict(parameters)))
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            if self.delay_s:
                await asyncio.sleep(self.delay_s)
            if self.raises is not None:
                raise self.raises
            return self.result
        finally:
            self.in_flight -= 1


@pytest.fixture
def clock():
    """A fake clock starting on a Wednesday at noon UTC."""
    return FakeClock(datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def rule_store(clock):
    return RuleStore(clock=clock)


@pytest.fixture
def opportunity_store(clock):
    return OpportunityStore(clock=clock)


@pytest.fixture
def executor():
    return StubExecutor()


@pytest.fixture
def queue(rule_store, opportunity_store, executor, clock):
    return ExecutionQueue(rule_store, opportunity_store, executor, max_concurrent_executions=5, clock=clock)


@pytest.fixture
def scheduler(rule_store, opportunity_store, queue, clock):
    return MatchScheduler(rule_store, opportunity_store, queue, tick_interval_s=30, cooldown_s=3600, clock=clock)


@pytest.fixture
def zksync_rule_draft():
    """The bridge rule from the zkSync scenario."""
    return {
        "name": "ZkSync Bridge",
        "trigger": "new_airdrop",
        "condition": "chain = 'zksync'",
        "action": "bridge",
        "chain": "zksync",
        "amount": "0.05",
    }


def make_opportunity(clock, **overrides):
    data = {
        "id": "zk_sync_airdrop",
        "name": "ZkSync Era Airdrop",
        "chain": "zksync",
        "project": "ZkSync",
        "requirements": ["Bridge funds to ZkSync"],
        "estimatedValue": "$500-2000",
        "deadline": clock() + timedelta(days=30),
        "status": "active",
    }
    data.update(overrides)
    return data
