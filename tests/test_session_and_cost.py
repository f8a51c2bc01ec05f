from __future__ import annotations

import os
from datetime import date

import pytest

from eames.engine.cost_tracking import (
    UsageHistory,
    calculate_cost,
    context_usage_percent,
    format_cost,
    format_tokens,
    is_approaching_context_limit,
    usage_summary,
)
from eames.engine.models import PermissionMode
from eames.engine.session import SessionState, TokenUsage, UsageTotals
from eames.shared.services.persistence import SessionPersistence
from eames.shared.services.settings_store import SettingsStore


def test_token_usage_from_sdk_tolerates_missing_fields() -> None:
    usage = TokenUsage.from_sdk({"input_tokens": 10, "output_tokens": None}, 0.5)
    assert usage.input_tokens == 10
    assert usage.output_tokens == 0
    assert usage.cost_usd == 0.5
    assert TokenUsage.from_sdk(None).total_tokens == 0


def test_usage_totals_accumulate() -> None:
    totals = UsageTotals()
    totals.add(TokenUsage(input_tokens=100, output_tokens=20, cache_read_input_tokens=5), 0.01)
    totals.add(TokenUsage(input_tokens=50, output_tokens=10), 0.02)
    assert totals.input_tokens == 150
    assert totals.output_tokens == 30
    assert totals.total_tokens == 185
    assert totals.requests == 2
    assert totals.cost_usd == pytest.approx(0.03)


def test_calculate_cost_uses_model_pricing() -> None:
    usage = TokenUsage(input_tokens=1_000_000, output_tokens=1_000_000)
    assert calculate_cost(usage, "claude-opus-4-20250514") == pytest.approx(90.0)
    assert calculate_cost(usage, "claude-3-5-haiku-20241022") == pytest.approx(1.5)
    assert calculate_cost(usage, "some-future-model") == pytest.approx(18.0)


def test_formatting() -> None:
    assert format_tokens(950) == "950"
    assert format_tokens(12_345) == "12.3K"
    assert format_tokens(2_500_000) == "2.50M"
    assert format_cost(0.0042) == "$0.0042"
    assert format_cost(1.5) == "$1.50"
    totals = UsageTotals(input_tokens=1_000, output_tokens=500, cost_usd=0.25)
    assert usage_summary(totals) == "1.5K tokens · $0.25"


def test_context_limit_threshold() -> None:
    assert context_usage_percent(50_000) == 25
    assert not is_approaching_context_limit(150_000)
    assert is_approaching_context_limit(160_000)


def test_usage_summary_reports_context_share() -> None:
    totals = UsageTotals(input_tokens=1_000, output_tokens=500, cost_usd=0.25)
    assert usage_summary(totals, context_tokens=50_000) == "1.5K tokens · $0.25 · 25% context"
    assert usage_summary(totals, context_tokens=170_000).endswith("85% context (near limit)")
    usage = TokenUsage(input_tokens=10, cache_read_input_tokens=900, output_tokens=99)
    assert usage.context_tokens == 910


def test_usage_history_records_daily_and_all_time(tmp_path) -> None:
    store = SettingsStore(path=tmp_path / "settings.json", legacy_path=None)
    history = UsageHistory(store)
    first = UsageTotals(input_tokens=100, output_tokens=10, cost_usd=0.1, requests=1)
    second = UsageTotals(input_tokens=40, output_tokens=4, cost_usd=0.05, requests=2)

    history.record(first, day=date(2026, 3, 1))
    history.record(second, day=date(2026, 3, 2))
    history.record(UsageTotals(), day=date(2026, 3, 2))

    assert history.day(date(2026, 3, 1)).input_tokens == 100
    assert history.day(date(2026, 3, 2)).requests == 2
    assert history.day(date(2026, 3, 3)).requests == 0
    total = history.all_time()
    assert total.input_tokens == 140
    assert total.requests == 3
    assert total.cost_usd == pytest.approx(0.15)


def test_session_history_rendering() -> None:
    session = SessionState()
    session.add_turn("user", "make a logo")
    session.add_turn("assistant", "here it is")
    session.add_turn("user", "make it blue")
    assert session.render_history(limit=2) == "ASSISTANT: here it is\nUSER: make it blue"
    assert session.recent_history(0) == []


def test_session_round_trips_through_persistence(tmp_path) -> None:
    persistence = SessionPersistence(tmp_path / "sessions")
    session = SessionState(permission_mode=PermissionMode.AUTO_ACCEPT_EDITS, model="m")
    session.add_turn("user", "hello")
    session.usage.add(TokenUsage(input_tokens=7, output_tokens=3), 0.001)
    session.context_tokens = 42_000

    path = persistence.save(session)
    assert path.exists()

    loaded = persistence.load(session.session_id)
    assert loaded.session_id == session.session_id
    assert loaded.permission_mode == PermissionMode.AUTO_ACCEPT_EDITS
    assert loaded.model == "m"
    assert [t.content for t in loaded.history] == ["hello"]
    assert loaded.usage.total_tokens == 10
    assert loaded.context_tokens == 42_000
    assert not loaded.busy


def test_persistence_latest_and_delete(tmp_path) -> None:
    persistence = SessionPersistence(tmp_path)
    assert persistence.latest() is None

    session = SessionState()
    persistence.save(session)
    assert persistence.latest().session_id == session.session_id

    (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
    os.utime(tmp_path / "broken.json", (2_000_000_000, 2_000_000_000))
    assert persistence.latest() is None

    assert persistence.delete(session.session_id)
    assert not persistence.delete(session.session_id)
    with pytest.raises(FileNotFoundError):
        persistence.load(session.session_id)


def test_unknown_permission_mode_in_saved_session_falls_back() -> None:
    loaded = SessionState.from_dict({"session_id": "s1", "permission_mode": "weird"})
    assert loaded.permission_mode == PermissionMode.PROMPT
    assert loaded.history == []
