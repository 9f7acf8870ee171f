"""Prompt assembler tests.

Pure functions, so these check section presence and ordering directly
against the assembled text.
"""

from __future__ import annotations

from src.lastword.interview.governor import TurnState, normalize_messages
from src.lastword.interview.prompts import (
    DEFAULT_BRAND_VOICE,
    LOYAL_GUIDANCE,
    build_product_section,
    build_retention_section,
    build_system_prompt,
    build_user_context_section,
    lifecycle_guidance,
)
from src.lastword.interview.protocol import COMPLETION_TOKEN, INSIGHTS_CLOSE, INSIGHTS_OPEN
from src.lastword.interview.schemas import (
    AccountConfig,
    CompetitorProbe,
    Plan,
    RetentionPaths,
    RetentionPathSetting,
    UserContext,
)
from tests.helpers import transcript


def _greeting_state() -> TurnState:
    return TurnState.from_transcript(normalize_messages([]), 3, 5)


# ── Assembly ──────────────────────────────────────────────────────────────────


class TestBuildSystemPrompt:
    """Full prompt composition."""

    def test_sections_in_fixed_order(self, account_config):
        prompt = build_system_prompt(
            account_config,
            _greeting_state(),
            UserContext(plan="Pro", account_age=12),
            "Mention the new reporting module.",
        )
        markers = [
            "## Brand Voice",
            "## About This Customer",
            "## Account-Specific Guidance",
            "## About Acme Analytics",
            "## Conversation Rules",
            "## Conversation Stage",
            "## Retention Paths",
            "## Ending the Conversation",
        ]
        positions = [prompt.index(m) for m in markers]
        assert positions == sorted(positions)

    def test_greeting_prompt_forbids_completion_token(self, account_id):
        prompt = build_system_prompt(AccountConfig(account_id=account_id), _greeting_state())
        assert f"do NOT output {COMPLETION_TOKEN}" in prompt

    def test_default_brand_voice_when_unset(self, account_config):
        prompt = build_system_prompt(account_config, _greeting_state())
        assert DEFAULT_BRAND_VOICE in prompt

    def test_custom_brand_voice(self, account_config):
        config = account_config.model_copy(update={"brand_voice": "Dry British wit."})
        prompt = build_system_prompt(config, _greeting_state())
        assert "Dry British wit." in prompt
        assert DEFAULT_BRAND_VOICE not in prompt

    def test_optional_sections_omitted(self, account_config):
        prompt = build_system_prompt(account_config, _greeting_state())
        assert "## About This Customer" not in prompt
        assert "## Account-Specific Guidance" not in prompt

    def test_no_discounts_and_one_question(self, account_config):
        prompt = build_system_prompt(account_config, _greeting_state())
        assert "NEVER offer a discount" in prompt
        assert "Ask ONE question per turn." in prompt

    def test_ending_names_token_and_block(self, account_config):
        prompt = build_system_prompt(account_config, _greeting_state())
        assert COMPLETION_TOKEN in prompt
        assert INSIGHTS_OPEN in prompt and INSIGHTS_CLOSE in prompt
        assert '"retention_path"' in prompt

    def test_hard_stop_phase_included(self, account_config):
        state = TurnState.from_transcript(transcript(5), 3, 5)
        prompt = build_system_prompt(account_config, state)
        assert "This is your final message" in prompt


# ── Sections ──────────────────────────────────────────────────────────────────


class TestUserContextSection:
    """Only present attributes plus lifecycle guidance."""

    def test_only_present_attributes(self):
        section = build_user_context_section(UserContext(plan="Pro", mrr=99.0))
        assert "- Plan: Pro" in section
        assert "- Monthly revenue: $99" in section
        assert "Email" not in section
        assert "Seats" not in section

    def test_empty_context_yields_nothing(self):
        assert build_user_context_section(UserContext()) == ""
        assert build_user_context_section(None) == ""

    def test_lifecycle_buckets(self):
        assert "brand-new" in lifecycle_guidance(0)
        assert "brand-new" in lifecycle_guidance(7)
        assert "early adoption" in lifecycle_guidance(8)
        assert "early adoption" in lifecycle_guidance(30)
        assert "mid-lifecycle" in lifecycle_guidance(31)
        assert "mid-lifecycle" in lifecycle_guidance(365)
        assert lifecycle_guidance(366) == LOYAL_GUIDANCE


class TestProductSection:
    """Product, competitors, plans, and probes."""

    def test_plans_and_merged_competitors(self, account_config):
        config = account_config.model_copy(
            update={
                "plans": [Plan(name="Starter", price="$19/mo"), Plan(name="Team")],
                "competitor_probes": [
                    CompetitorProbe(name="Looker", questions=["Was it the modeling layer?"]),
                    CompetitorProbe(name="Metabase"),
                ],
            }
        )
        section = build_product_section(config)
        assert "- Competes with: Metabase, Looker" in section
        assert "- Plans: Starter ($19/mo), Team" in section
        assert "- Looker: Was it the modeling layer?" in section


class TestRetentionSection:
    """Only enabled paths are described."""

    def test_offboard_enabled_by_default(self):
        section = build_retention_section(RetentionPaths())
        assert "GRACEFUL OFFBOARD" in section
        assert "PAUSE" not in section

    def test_enabled_paths_with_offer_copy(self):
        paths = RetentionPaths(
            pause=RetentionPathSetting(enabled=True, offer="Pause up to 3 months"),
            downgrade=RetentionPathSetting(enabled=True, offer="Starter at $19"),
            offboard_gracefully=RetentionPathSetting(enabled=False),
        )
        section = build_retention_section(paths)
        assert "- Offer: Pause up to 3 months" in section
        assert "- Offer: Starter at $19" in section
        assert "GRACEFUL OFFBOARD" not in section

    def test_nothing_enabled(self):
        paths = RetentionPaths(offboard_gracefully=RetentionPathSetting(enabled=False))
        assert "No retention offers are enabled" in build_retention_section(paths)
