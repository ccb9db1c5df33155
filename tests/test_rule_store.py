# tests/test_rule_store.py

from datetime import timedelta

import pytest

from data_models import ActionKind, ExecutionResult, TriggerKind
from rule_store import RuleStore
from utils import ValidationError


def test_add_assigns_id_and_zero_counters(rule_store, zksync_rule_draft):
    rule = rule_store.add(zksync_rule_draft)

    assert rule.id.startswith("rule_")
    assert rule.trigger is TriggerKind.NEW_OPPORTUNITY
    assert rule.action is ActionKind.BRIDGE
    assert rule.action_template_id == "bridge-action"
    assert rule.execution_count == 0
    assert rule.last_executed_at is None
    assert rule.enabled is True
    assert rule_store.add(zksync_rule_draft).id != rule.id
    assert len(rule_store) == 2


@pytest.mark.parametrize("missing", ["name", "trigger", "action"])
def test_add_rejects_missing_required_field(rule_store, zksync_rule_draft, missing):
    del zksync_rule_draft[missing]
    with pytest.raises(ValidationError):
        rule_store.add(zksync_rule_draft)
    assert len(rule_store) == 0


@pytest.mark.parametrize("field, value", [
    ("trigger", "earthquake"),
    ("action", "teleport"),
    ("condition", "chain = "),
    ("execution_count", 7),
    ("action_parameters", "not-a-mapping"),
])
def test_add_rejects_invalid_drafts(rule_store, zksync_rule_draft, field, value):
    zksync_rule_draft[field] = value
    with pytest.raises(ValidationError):
        rule_store.add(zksync_rule_draft)


def test_draft_parameters_override_template_defaults(rule_store, zksync_rule_draft):
    zksync_rule_draft["action_parameters"] = {"bridgeProtocol": "stargate"}
    rule = rule_store.add(zksync_rule_draft)
    assert rule.action_parameters["bridgeProtocol"] == "stargate"
    assert rule.action_parameters["toChain"] == "zksync"


def test_reads_return_copies(rule_store, zksync_rule_draft):
    rule = rule_store.add(zksync_rule_draft)
    fetched = rule_store.get(rule.id)
    fetched.name = "Changed"
    fetched.action_parameters["toChain"] = "polygon"

    stored = rule_store.get(rule.id)
    assert stored.name == "ZkSync Bridge"
    assert stored.action_parameters["toChain"] == "zksync"


def test_list_active_skips_disabled_rules(rule_store, zksync_rule_draft):
    active = rule_store.add(zksync_rule_draft)
    disabled = rule_store.add(dict(zksync_rule_draft, enabled=False))

    assert {r.id for r in rule_store.list()} == {active.id, disabled.id}
    assert [r.id for r in rule_store.list_active()] == [active.id]


def test_update_unknown_rule_returns_false(rule_store):
    assert rule_store.update("rule_missing", name="x") is False


def test_unknown_rule_ids_return_none_or_false(rule_store):
    assert rule_store.get("rule_missing") is None
    assert rule_store.remove("rule_missing") is False
    assert rule_store.record_execution("rule_missing", ExecutionResult(success=True)) is None


def test_update_action_remaps_template_and_drops_stale_parameters(rule_store, zksync_rule_draft):
    rule = rule_store.add(zksync_rule_draft)

    assert rule_store.update(rule.id, action="swap") is True

    updated = rule_store.get(rule.id)
    assert updated.action is ActionKind.SWAP
    assert updated.action_template_id == "swap-action"
    assert "bridgeProtocol" not in updated.action_parameters
    assert updated.action_parameters["dex"] == "uniswap-v3"
    assert updated.action_parameters["chain"] == "zksync"


def test_update_without_action_change_keeps_parameters(rule_store, zksync_rule_draft):
    zksync_rule_draft["action_parameters"] = {"bridgeProtocol": "stargate"}
    rule = rule_store.add(zksync_rule_draft)

    rule_store.update(rule.id, action="bridge", condition="chain = 'scroll'")

    updated = rule_store.get(rule.id)
    assert updated.action_parameters["bridgeProtocol"] == "stargate"
    assert updated.condition == "chain = 'scroll'"


def test_chain_and_amount_update_rederives_template_defaults(rule_store, zksync_rule_draft):
    """Defaults follow the rule's new chain and amount; explicit overrides are kept."""
    zksync_rule_draft["action_parameters"] = {"bridgeProtocol": "stargate", "recipient": "0xme"}
    rule = rule_store.add(zksync_rule_draft)

    rule_store.update(rule.id, chain="arbitrum", amount="1.5")

    params = rule_store.get(rule.id).action_parameters
    assert params["toChain"] == "arbitrum"
    assert params["amount"] == "1.5"
    assert params["bridgeProtocol"] == "stargate"
    assert params["recipient"] == "0xme"


def test_same_action_with_new_chain_rederives_defaults(rule_store, zksync_rule_draft):
    rule = rule_store.add(zksync_rule_draft)

    rule_store.update(rule.id, action="bridge", chain="arbitrum")

    updated = rule_store.get(rule.id)
    assert updated.action_template_id == "bridge-action"
    assert updated.action_parameters["toChain"] == "arbitrum"
    assert updated.action_parameters["amount"] == "0.05"


def test_action_change_drops_previous_overrides(rule_store, zksync_rule_draft):
    zksync_rule_draft["action_parameters"] = {"bridgeProtocol": "stargate"}
    rule = rule_store.add(zksync_rule_draft)

    rule_store.update(rule.id, action="stake", amount="2", action_parameters={"poolId": "7"})

    params = rule_store.get(rule.id).action_parameters
    assert "bridgeProtocol" not in params
    assert params["amount"] == "2"
    assert params["poolId"] == "7"


@pytest.mark.parametrize("changes", [
    {"execution_count": 0},
    {"last_executed_at": None},
    {"condition": "chain = "},
    {"name": ""},
])
def test_update_rejects_invalid_changes(rule_store, zksync_rule_draft, changes):
    rule = rule_store.add(zksync_rule_draft)
    with pytest.raises(ValidationError):
        rule_store.update(rule.id, **changes)
    assert rule_store.get(rule.id).name == "ZkSync Bridge"


def test_record_execution_updates_counters_and_history(rule_store, zksync_rule_draft, clock):
    rule = rule_store.add(zksync_rule_draft)
    ok = ExecutionResult(success=True, transaction_ref="0x1", timestamp=clock())
    clock.advance(minutes=5)
    failed = ExecutionResult(success=False, error="reverted", timestamp=clock())

    rule_store.record_execution(rule.id, ok)
    updated = rule_store.record_execution(rule.id, failed)

    assert updated.execution_count == 2
    assert updated.last_executed_at == clock()
    assert updated.last_result.error == "reverted"
    assert [r.success for r in rule_store.history(rule.id)] == [True, False]


def test_record_execution_for_deleted_rule_is_dropped(rule_store):
    assert rule_store.record_execution("rule_missing", ExecutionResult(success=True)) is None
    assert rule_store.all_history() == []


def test_remove_purges_history(rule_store, zksync_rule_draft):
    rule = rule_store.add(zksync_rule_draft)
    rule_store.record_execution(rule.id, ExecutionResult(success=True))

    assert rule_store.remove(rule.id) is True
    assert rule_store.get(rule.id) is None
    assert rule_store.history(rule.id) == []
    assert rule_store.remove(rule.id) is False


def test_cool_down_window(rule_store, zksync_rule_draft, clock):
    rule = rule_store.add(zksync_rule_draft)
    assert RuleStore.is_cooling_down(rule, clock(), 3600) is False

    rule = rule_store.record_execution(rule.id, ExecutionResult(success=True, timestamp=clock()))
    assert RuleStore.is_cooling_down(rule, clock() + timedelta(minutes=59), 3600) is True
    assert RuleStore.is_cooling_down(rule, clock() + timedelta(minutes=60), 3600) is False
    assert RuleStore.is_cooling_down(rule, clock() + timedelta(minutes=1), 0) is False
