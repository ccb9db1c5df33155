# action_templates.py
"""
Maps a rule's abstract action kind onto a concrete action template and its
default parameters, and merges runtime facts into those parameters before
the template is handed to the ActionExecutor.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from data_models import ActionKind, Opportunity, Rule
from utils import ValidationError

NATIVE_TOKEN = "0x0000000000000000000000000000000000000000"
USDC_TOKEN = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"

DEFAULT_SOURCE_CHAIN = "ethereum"
DEFAULT_BRIDGE_PROTOCOL = "layerzero"
DEFAULT_DEX = "uniswap-v3"
DEFAULT_STAKING_PROTOCOL = "lido"


@dataclass(frozen=True)
class ActionTemplate:
    id: str
    name: str
    description: str
    required_parameters: Tuple[str, ...] = ()
    optional_parameters: Tuple[str, ...] = ()


TEMPLATES: Dict[str, ActionTemplate] = {
    t.id: t for t in (
        ActionTemplate(
            id="bridge-action",
            name="Bridge Action",
            description="Bridge tokens between chains",
            required_parameters=("fromChain", "toChain", "amount", "bridgeProtocol"),
            optional_parameters=("tokenAddress", "recipient"),
        ),
        ActionTemplate(
            id="swap-action",
            name="Swap Action",
            description="Swap tokens on a DEX",
            required_parameters=("chain", "tokenIn", "tokenOut", "amount", "dex"),
            optional_parameters=("slippage", "recipient"),
        ),
        ActionTemplate(
            id="stake-action",
            name="Stake Action",
            description="Stake tokens with a staking protocol",
            required_parameters=("chain", "protocol", "amount", "token"),
            optional_parameters=("poolId", "duration"),
        ),
        ActionTemplate(
            id="airdrop-hunter-action",
            name="Airdrop Hunter Action",
            description="Run the interaction sequence an airdrop opportunity requires",
            required_parameters=("airdropOpportunity", "ruleConfig"),
            optional_parameters=("maxGasPrice", "maxSlippage", "retryAttempts"),
        ),
    )
}


def map_action(action: Any, chain: str = "", amount: str = "") -> Tuple[str, Dict[str, Any]]:
    """
    Returns (template_id, default_parameters) for an action kind.
    Every ActionKind has exactly one template; anything else is a ValidationError.
    """
    kind = ActionKind.parse(action)

    if kind is ActionKind.BRIDGE:
        return "bridge-action", {
            "fromChain": DEFAULT_SOURCE_CHAIN,
            "toChain": chain,
            "amount": amount,
            "bridgeProtocol": DEFAULT_BRIDGE_PROTOCOL,
            "tokenAddress": "native",
        }
    if kind is ActionKind.SWAP:
        return "swap-action", {
            "chain": chain,
            "tokenIn": NATIVE_TOKEN,
            "tokenOut": USDC_TOKEN,
            "amount": amount,
            "dex": DEFAULT_DEX,
            "slippage": "0.5",
        }
    if kind is ActionKind.STAKE:
        return "stake-action", {
            "chain": chain,
            "protocol": DEFAULT_STAKING_PROTOCOL,
            "amount": amount,
            "token": "native",
        }
    if kind in (ActionKind.BRIDGE_AND_SWAP, ActionKind.INTERACT_CONTRACT):
        return "airdrop-hunter-action", {
            "maxGasPrice": "50",
            "maxSlippage": "0.5",
            "retryAttempts": 3,
        }
    raise ValidationError(f"No action template for action kind {kind!r}")


def build_runtime_parameters(
    rule: Rule,
    opportunity: Optional[Opportunity] = None,
    facts: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Merges the rule's stored parameters with the facts of the current match."""
    params = dict(rule.action_parameters)
    facts = facts or {}

    if opportunity is not None:
        params["airdropOpportunity"] = opportunity.facts()
    if facts.get("marketData"):
        params["marketData"] = dict(facts["marketData"])
    if facts.get("timeData"):
        params["timeData"] = dict(facts["timeData"])

    params["ruleConfig"] = {
        "action": rule.action.value,
        "amount": rule.amount,
        "chain": rule.chain,
        "condition": rule.condition,
    }
    return params


def missing_parameters(template_id: str, parameters: Mapping[str, Any]) -> List[str]:
    """Required parameters of the template that are absent or empty."""
    template = TEMPLATES.get(template_id)
    if template is None:
        raise ValidationError(f"Unknown action template: {template_id!r}")
    return [
        name for name in template.required_parameters
        if parameters.get(name) in (None, "")
    ]
