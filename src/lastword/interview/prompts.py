"""System prompt assembly for one exit-interview turn.

``build_system_prompt`` composes the instruction text in a fixed order:

    1. Brand voice directive (custom, or the default casual voice)
    2. User context block with lifecycle-stage guidance
    3. Matched targeting-rule guidance
    4. Product, competitor, and plan context
    5. Conversation style rules
    6. Turn governor phase instructions
    7. Enabled retention paths
    8. Ending instructions: completion token and insights schema

Every builder is a pure function of its inputs. No I/O happens here; the
caller resolves config, rules, and turn state beforehand.
"""

from __future__ import annotations

import json

from src.lastword.interview.governor import TurnState, phase_instructions
from src.lastword.interview.protocol import COMPLETION_TOKEN, INSIGHTS_CLOSE, INSIGHTS_OPEN
from src.lastword.interview.schemas import (
    AccountConfig,
    InsightCategory,
    RetentionPathKind,
    RetentionPaths,
    Sentiment,
    UserContext,
)

# ── Fixed Copy ────────────────────────────────────────────────────────────────────


DEFAULT_BRAND_VOICE: str = (
    "Casual and human, like a quick Slack message from someone on the team, "
    "not a corporate email. Plain words, no jargon, no exclamation-mark enthusiasm."
)

CONVERSATION_RULES: str = """\
## Conversation Rules

TONE:
- Casual and human, never defensive about {product}
- Never use filler like "We completely understand", "We truly appreciate", "We're grateful"
- NEVER offer a discount, coupon, or price cut. Not even if they ask.

VOICE:
- Always "we" and "us", never "I" and "me". You represent the {product} team.

FORMAT:
- 1-2 short sentences per response, MAX. No exceptions.
- Ask ONE question per turn.
- Use reflective listening: briefly mirror what they said, then ask deeper.
- Good example: "Ah makes sense, was it the price itself or more that it didn't feel worth it for what you use?"

PROBING:
- Vague answers like "too expensive", "not using it", "found something better" always have a real story.
- For "too expensive": absolute price, value perception, budget change, team size, or wrong tier?
- For "found something better": WHICH tool? WHAT specifically made them switch?
- For "missing features": which specific workflow broke down?
- For "technical issues": what broke, how often, how bad?"""

# Lifecycle guidance by account age in days (inclusive upper bounds)
LIFECYCLE_GUIDANCE: tuple[tuple[float, str], ...] = (
    (
        7,
        "This is a brand-new customer still onboarding. Focus on first impressions, "
        "setup friction, and whether they ever reached their first success.",
    ),
    (
        30,
        "This customer is in early adoption. Explore whether the product fit their "
        "workflow and whether their team actually adopted it.",
    ),
    (
        365,
        "This customer is mid-lifecycle. Explore what changed: needs, budget, team, "
        "or a competitor entering the picture.",
    ),
)

LOYAL_GUIDANCE: str = (
    "This is a loyal, high-value customer of more than a year. Be especially "
    "respectful of their history with us and find out what finally tipped the balance."
)

_RETENTION_COPY: dict[RetentionPathKind, tuple[str, str]] = {
    RetentionPathKind.PAUSE: (
        "PAUSE",
        "temporary issue (budget cuts, taking a break, project between phases)",
    ),
    RetentionPathKind.DOWNGRADE: (
        "DOWNGRADE PLAN",
        "only uses basic features and price feels too high",
    ),
    RetentionPathKind.FIX_AND_FOLLOWUP: (
        "FIX & FOLLOW UP",
        "specific bug, crash, or performance issue",
    ),
    RetentionPathKind.CONCIERGE_ONBOARDING: (
        "CONCIERGE ONBOARDING",
        "team never properly adopted the product (only a few people use it)",
    ),
    RetentionPathKind.OFFBOARD_GRACEFULLY: (
        "GRACEFUL OFFBOARD",
        "unsolvable (company closing, career change, genuinely happy with alternative)",
    ),
}

_RETENTION_ACTION: dict[RetentionPathKind, str] = {
    RetentionPathKind.FIX_AND_FOLLOWUP: (
        "acknowledge the problem, say we'll create a ticket and follow up personally"
    ),
    RetentionPathKind.OFFBOARD_GRACEFULLY: "thank warmly, no save attempt, wish them well",
}

# Example insights object embedded verbatim so the model copies the field set
INSIGHTS_SCHEMA: dict[str, str | list[str]] = {
    "surface_reason": "what they said first",
    "deep_reasons": ["the real reasons uncovered"],
    "sentiment": "|".join(s.value for s in Sentiment),
    "salvageable": "true|false",
    "key_quote": "most revealing thing they said",
    "category": "|".join(c.value for c in InsightCategory),
    "competitor": "name or null",
    "feature_gaps": ["specific features mentioned"],
    "usage_duration": "how long they used the product if mentioned, or null",
    "retention_path": "|".join(k.value for k in RetentionPathKind),
    "retention_accepted": "true|false",
}


# ── Section Builders ──────────────────────────────────────────────────────────────


def build_brand_voice_section(brand_voice: str | None) -> str:
    voice = (brand_voice or "").strip() or DEFAULT_BRAND_VOICE
    return f"## Brand Voice\n{voice}"


def lifecycle_guidance(account_age_days: float) -> str:
    """Guidance sentence for the account-age bucket."""
    for upper, guidance in LIFECYCLE_GUIDANCE:
        if account_age_days <= upper:
            return guidance
    return LOYAL_GUIDANCE


def build_user_context_section(context: UserContext | None) -> str:
    """User attributes that were supplied, plus lifecycle guidance. Empty if none."""
    if context is None:
        return ""
    present = context.present()
    if not present:
        return ""

    lines = ["## About This Customer"]
    if "email" in present:
        lines.append(f"- Email: {present['email']}")
    if "plan" in present:
        lines.append(f"- Plan: {present['plan']}")
    if "account_age" in present:
        lines.append(f"- Customer for: {_fmt_number(present['account_age'])} days")
    if "seats" in present:
        lines.append(f"- Seats: {_fmt_number(present['seats'])}")
    if "mrr" in present:
        lines.append(f"- Monthly revenue: ${_fmt_number(present['mrr'])}")
    if "account_age" in present:
        lines.append("")
        lines.append(lifecycle_guidance(float(present["account_age"])))
    lines.append("Use this to ask sharper questions. Never recite these details back to them.")
    return "\n".join(lines)


def build_rule_section(rule_addition: str | None) -> str:
    if not rule_addition:
        return ""
    return (
        "## Account-Specific Guidance (MUST FOLLOW)\n"
        "The account owner configured the following for customers like this one. "
        "Follow it unless it conflicts with the no-discount rule.\n"
        f"{rule_addition.strip()}"
    )


def build_product_section(config: AccountConfig) -> str:
    product = config.product_name
    competitor_names = list(dict.fromkeys(
        config.competitors + [p.name for p in config.competitor_probes]
    ))
    competitor_list = ", ".join(competitor_names) if competitor_names else "other tools in the market"
    plan_list = ", ".join(
        f"{p.name} ({p.price})" if p.price else p.name for p in config.plans
    )

    lines = [
        f"You are a friendly exit interview AI for {product}. Your job is to understand WHY "
        "a customer is cancelling: not the surface reason, but the real story.",
        "",
        f"## About {product}",
    ]
    if config.product_description:
        lines.append(config.product_description.strip())
    lines.append(f"- Competes with: {competitor_list}")
    if plan_list:
        lines.append(f"- Plans: {plan_list}")

    probes = [p for p in config.competitor_probes if p.questions]
    if probes:
        lines.append("")
        lines.append("If they mention one of these competitors, work in one of its questions:")
        for probe in probes:
            lines.append(f"- {probe.name}: " + " / ".join(q.strip() for q in probe.questions))
    return "\n".join(lines)


def build_conversation_rules(product_name: str) -> str:
    return CONVERSATION_RULES.format(product=product_name)


def build_retention_section(paths: RetentionPaths) -> str:
    """Describe only the enabled retention paths, in canonical order."""
    sections: list[str] = []
    for kind in paths.enabled_kinds():
        title, trigger = _RETENTION_COPY[kind]
        block = [title, f"- Trigger: {trigger}"]
        offer = paths.setting(kind).offer
        if kind in _RETENTION_ACTION:
            block.append(f"- Action: {_RETENTION_ACTION[kind]}")
        elif offer:
            block.append(f"- Offer: {offer}")
        if kind is RetentionPathKind.CONCIERGE_ONBOARDING:
            block.append("- ONLY offer for multi-seat accounts")
        sections.append("\n".join(block))

    body = "\n\n".join(sections) if sections else (
        "No retention offers are enabled. Do not try to save the customer."
    )
    return (
        "## Retention Paths\n"
        "Based on what you learn, pick the one path that fits. NEVER offer a discount.\n\n"
        f"{body}"
    )


def build_ending_section() -> str:
    schema = json.dumps(INSIGHTS_SCHEMA, indent=2)
    return (
        "## Ending the Conversation\n"
        f"When you wrap up, end your final message with {COMPLETION_TOKEN}.\n"
        "Then include exactly one structured data block:\n\n"
        f"{INSIGHTS_OPEN}\n{schema}\n{INSIGHTS_CLOSE}\n\n"
        "The block must be valid JSON with exactly these fields. "
        f"Never output {COMPLETION_TOKEN} or the block before you are wrapping up."
    )


# ── Assembly ──────────────────────────────────────────────────────────────────────


def build_system_prompt(
    config: AccountConfig,
    state: TurnState,
    user_context: UserContext | None = None,
    rule_addition: str | None = None,
) -> str:
    """Compose the full system prompt for one turn.

    Args:
        config: Resolved, clamped account configuration.
        state: Turn governor snapshot for this request.
        user_context: Optional caller-supplied customer attributes.
        rule_addition: Prompt addition from the first matching targeting rule.

    Returns:
        Prompt text; empty sections are omitted.
    """
    sections = [
        build_brand_voice_section(config.brand_voice),
        build_user_context_section(user_context),
        build_rule_section(rule_addition),
        build_product_section(config),
        build_conversation_rules(config.product_name),
        phase_instructions(state),
        build_retention_section(config.retention_paths),
        build_ending_section(),
    ]
    return "\n\n".join(s for s in sections if s)


def _fmt_number(value: float | int | str) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
