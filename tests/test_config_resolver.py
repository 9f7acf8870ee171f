"""Config resolver tests: key lookup, defaults, clamping, and rule loading."""

from __future__ import annotations

import uuid
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from src.lastword.core.errors import AuthError
from src.lastword.interview.config_resolver import ConfigResolver, clamp_exchanges
from src.lastword.interview.schemas import RetentionPathKind, RuleLogic
from tests.helpers import FakeResult, FakeSession, session_factory_for


def _config_row(**overrides):
    values = {
        "product_name": "Acme",
        "product_description": "Dashboards",
        "competitors": ["Metabase", " "],
        "plans": [{"name": "Pro", "price": "$49/mo"}, "Team", {"price": "orphan"}],
        "retention_paths": {"pause": {"enabled": True, "offer": "3 months"}, "bogus": {}},
        "min_exchanges": 3,
        "max_exchanges": 5,
        "brand_voice": "  ",
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def _rule_row(**overrides):
    values = {
        "id": uuid.uuid4(),
        "name": "High MRR",
        "priority": 1,
        "condition_logic": "or",
        "conditions": [{"variable": "mrr", "operator": ">=", "value": 500}],
        "prompt_addition": "Mention the account manager.",
    }
    values.update(overrides)
    return SimpleNamespace(**values)


# ── Clamping ──────────────────────────────────────────────────────────────────


class TestClampExchanges:
    """Bounds forced into [1, 20] with max >= min."""

    @pytest.mark.parametrize(
        ("stored", "expected"),
        [
            ((3, 5), (3, 5)),
            ((0, 0), (1, 1)),
            ((25, 40), (20, 20)),
            ((8, 4), (8, 8)),
            ((-5, 50), (1, 20)),
            ((None, "x"), (3, 5)),
        ],
    )
    def test_clamp(self, stored, expected):
        lo, hi = clamp_exchanges(*stored)
        assert (lo, hi) == expected
        assert hi >= lo


# ── Account Resolution ────────────────────────────────────────────────────────


class TestResolveAccount:
    """Access key to account id."""

    async def test_known_key(self, account_id):
        session = FakeSession([FakeResult(uuid.UUID(account_id))])
        resolver = ConfigResolver(session_factory_for(session))
        assert await resolver.resolve_account("lw_abc") == account_id

    async def test_unknown_key_raises(self):
        resolver = ConfigResolver(session_factory_for(FakeSession([FakeResult(None)])))
        with pytest.raises(AuthError):
            await resolver.resolve_account("lw_nope")

    async def test_missing_key_raises_without_query(self):
        session = FakeSession()
        resolver = ConfigResolver(session_factory_for(session))
        with pytest.raises(AuthError):
            await resolver.resolve_account("   ")
        assert session.executed == []

    async def test_cache_hit_skips_database(self, account_id):
        session = FakeSession()
        redis = AsyncMock()
        redis.get.return_value = account_id
        resolver = ConfigResolver(session_factory_for(session), redis=redis)

        assert await resolver.resolve_account("lw_abc") == account_id
        assert session.executed == []

    async def test_cache_miss_populates_cache(self, account_id):
        session = FakeSession([FakeResult(uuid.UUID(account_id))])
        redis = AsyncMock()
        redis.get.return_value = None
        resolver = ConfigResolver(session_factory_for(session), redis=redis, cache_ttl=60)

        await resolver.resolve_account("lw_abc")
        key, value = redis.set.call_args.args
        assert key.startswith("account:key:")
        assert "lw_abc" not in key
        assert value == account_id
        assert redis.set.call_args.kwargs["ex"] == 60

    async def test_cache_failure_falls_back_to_database(self, account_id):
        session = FakeSession([FakeResult(uuid.UUID(account_id))])
        redis = AsyncMock()
        redis.get.side_effect = ConnectionError("redis down")
        redis.set.side_effect = ConnectionError("redis down")
        resolver = ConfigResolver(session_factory_for(session), redis=redis)
        assert await resolver.resolve_account("lw_abc") == account_id


# ── Config Loading ────────────────────────────────────────────────────────────


class TestLoadConfig:
    """Stored config mapping and synthesized defaults."""

    async def test_missing_config_synthesizes_default(self, account_id):
        resolver = ConfigResolver(session_factory_for(FakeSession([FakeResult(None)])))
        config = await resolver.load_config(account_id)
        assert config.is_default
        assert config.product_description
        assert config.retention_paths.enabled_kinds() == [RetentionPathKind.OFFBOARD_GRACEFULLY]
        assert (config.min_exchanges, config.max_exchanges) == (3, 5)

    async def test_stored_config_mapped(self, account_id):
        competitors = [SimpleNamespace(name="Looker", questions=["Why Looker?", ""])]
        session = FakeSession([FakeResult(_config_row()), FakeResult(rows=competitors)])
        config = await ConfigResolver(session_factory_for(session)).load_config(account_id)

        assert not config.is_default
        assert config.product_name == "Acme"
        assert config.competitors == ["Metabase"]
        assert [(p.name, p.price) for p in config.plans] == [("Pro", "$49/mo"), ("Team", "")]
        assert config.competitor_probes[0].questions == ["Why Looker?"]
        assert config.retention_paths.pause.enabled
        assert config.retention_paths.pause.offer == "3 months"
        assert config.retention_paths.offboard_gracefully.enabled
        assert config.brand_voice is None

    async def test_inverted_bounds_clamped_at_read_time(self, account_id):
        row = _config_row(min_exchanges=9, max_exchanges=2)
        session = FakeSession([FakeResult(row), FakeResult(rows=[])])
        config = await ConfigResolver(session_factory_for(session)).load_config(account_id)
        assert (config.min_exchanges, config.max_exchanges) == (9, 9)
        # Row left untouched
        assert (row.min_exchanges, row.max_exchanges) == (9, 2)
        assert session.commits == 0


class TestLoadRules:
    """Rule rows converted, malformed ones dropped."""

    async def test_rules_converted(self, account_id):
        bad = _rule_row(name="Broken", conditions=[{"variable": "shoe_size", "operator": "=="}])
        session = FakeSession([FakeResult(rows=[_rule_row(), bad])])
        rules = await ConfigResolver(session_factory_for(session)).load_rules(account_id)

        assert len(rules) == 1
        assert rules[0].logic is RuleLogic.OR
        assert rules[0].conditions[0].value == 500
