# tests/test_action_templates.py

import pytest

from action_templates import TEMPLATES, build_runtime_parameters, map_action, missing_parameters
from data_models import ActionKind, Opportunity
from utils import ValidationError


@pytest.mark.parametrize("action, template_id", [
    ("bridge", "bridge-action"),
    ("swap", "swap-action"),
    ("stake", "stake-action"),
    ("bridge_and_swap", "airdrop-hunter-action"),
    ("interact_contract", "airdrop-hunter-action"),
])
def test_every_action_kind_maps_to_a_known_template(action, template_id):
    mapped_id, params = map_action(action, chain="zksync", amount="0.05")
    assert mapped_id == template_id
    assert mapped_id in TEMPLATES


def test_bridge_defaults_carry_chain_and_amount():
    template_id, params = map_action(ActionKind.BRIDGE, chain="zksync", amount="0.05")
    assert params["toChain"] == "zksync"
    assert params["fromChain"] == "ethereum"
    assert params["amount"] == "0.05"
    assert params["bridgeProtocol"] == "layerzero"
    assert missing_parameters(template_id, params) == []


def test_unknown_action_kind_is_rejected():
    with pytest.raises(ValidationError):
        map_action("teleport")


def test_unknown_template_is_rejected():
    with pytest.raises(ValidationError):
        missing_parameters("no-such-template", {})


def test_runtime_parameters_merge_opportunity_and_rule_config(rule_store, zksync_rule_draft):
    rule = rule_store.add(zksync_rule_draft)
    opportunity = Opportunity(id="zk", name="ZkSync Era Airdrop", chain="zksync", estimated_value="$500-2000")

    params = build_runtime_parameters(rule, opportunity, {"timeData": {"hour": 3}})

    assert params["airdropOpportunity"]["estimatedValue"] == "$500-2000"
    assert params["timeData"] == {"hour": 3}
    assert params["ruleConfig"] == {
        "action": "bridge",
        "amount": "0.05",
        "chain": "zksync",
        "condition": "chain = 'zksync'",
    }
    # The stored parameters are left untouched
    assert "airdropOpportunity" not in rule.action_parameters


def test_airdrop_hunter_needs_an_opportunity(rule_store):
    rule = rule_store.add({"name": "Hunter", "trigger": "time_based", "action": "bridge_and_swap"})
    params = build_runtime_parameters(rule)
    assert missing_parameters(rule.action_template_id, params) == ["airdropOpportunity"]
