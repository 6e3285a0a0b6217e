"""
Plan Catalog - Static plan definitions and action credit costs.

The catalog is code, not configuration: changing a plan allowance is a
deploy, and the cost table is checked for totality at import time.
"""

from types import MappingProxyType

from listing_engine.models.api import ActionType
from listing_engine.models.domain import Plan

FREE_PLAN_ID = "free"

PLANS: MappingProxyType[str, Plan] = MappingProxyType(
    {
        "free": Plan(
            id="free",
            name="Try It Out",
            credits=15,
            price_monthly=0,
            trial_days=7,
            features=(
                "15 credits to try image, video and mockup generation",
                "Unlimited titles & descriptions",
                "Unlimited AI-powered tags",
                "7-day trial",
            ),
        ),
        "starter": Plan(
            id="starter",
            name="Launch Your Shop",
            credits=100,
            price_monthly=19,
            features=(
                "100 credits per month",
                "Unlimited titles & descriptions",
                "Unlimited AI-powered tags",
                "Priority support",
            ),
        ),
        "pro": Plan(
            id="pro",
            name="Scale Your Business",
            credits=300,
            price_monthly=49,
            features=(
                "300 credits per month",
                "Unlimited titles & descriptions",
                "Bulk listing export",
                "Priority support",
            ),
        ),
        "enterprise": Plan(
            id="enterprise",
            name="Dominate Your Niche",
            credits=1000,
            price_monthly=129,
            features=(
                "1000 credits per month",
                "Unlimited titles & descriptions",
                "Bulk listing export",
                "Dedicated support",
            ),
        ),
    }
)

# One image + one mockup + one video = 9 credits
ACTION_COSTS: MappingProxyType[ActionType, int] = MappingProxyType(
    {
        ActionType.IMAGE_GENERATION: 3,
        ActionType.VIDEO_GENERATION: 5,
        ActionType.MOCKUP_DOWNLOAD: 1,
        ActionType.SEO_CONTENT: 0,
        ActionType.AI_PROMPT_SUGGESTION: 0,
        ActionType.TITLE_GENERATION: 0,
        ActionType.DESCRIPTION_GENERATION: 0,
        ActionType.TAGS_GENERATION: 0,
    }
)

_uncosted = [action.value for action in ActionType if action not in ACTION_COSTS]
if _uncosted:
    raise RuntimeError(f"Action types without a credit cost: {', '.join(_uncosted)}")

# One-time add-on packs sold through payment-mode checkout, priced in the
# credits their contents would cost: 20 images or 2 videos
ADDON_CREDITS: MappingProxyType[str, int] = MappingProxyType(
    {
        "images": 20 * ACTION_COSTS[ActionType.IMAGE_GENERATION],
        "videos": 2 * ACTION_COSTS[ActionType.VIDEO_GENERATION],
    }
)


def get_plan(plan_id: str) -> Plan:
    """
    Look up a plan by id.

    Raises:
        KeyError: If the plan id is not in the catalog
    """
    try:
        return PLANS[plan_id]
    except KeyError:
        raise KeyError(f"Unknown plan: {plan_id}") from None


def free_plan() -> Plan:
    """The zero-cost trial plan."""
    return PLANS[FREE_PLAN_ID]


def credit_cost(action_type: ActionType, quantity: int = 1) -> int:
    """
    Credits required for an action.

    Raises:
        ValueError: If quantity is less than 1
    """
    if quantity < 1:
        raise ValueError(f"Quantity must be at least 1: {quantity}")
    return ACTION_COSTS[action_type] * quantity


def is_free_action(action_type: ActionType) -> bool:
    """Zero-cost actions are never metered."""
    return ACTION_COSTS[action_type] == 0


def addon_credits(addon_type: str) -> int:
    """
    Credits granted by a one-time add-on purchase.

    Raises:
        KeyError: If the add-on type is not sold
    """
    try:
        return ADDON_CREDITS[addon_type]
    except KeyError:
        raise KeyError(f"Unknown add-on: {addon_type}") from None
