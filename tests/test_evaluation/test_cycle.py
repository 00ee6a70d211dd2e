"""Tests for the rule evaluation cycle.

Covers:
- Firing: one Signal, one queued Notification, state reset to Idle
- Consecutive breach counting with intermittent successes
- Tenant isolation of metric lookups
- Rules without data are skipped and their state untouched
- Per-rule failures are isolated and their writes discarded
- Commit failures roll back and raise
- Cancellation mid-fire rolls back and propagates
- Frequency and tenant filters
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Optional
from unittest.mock import patch

import pytest

from signal_engine.core.enums import Severity
from signal_engine.core.exceptions import CycleCommitError
from signal_engine.evaluation.cycle import (
    EvaluationCycle,
    build_signal_description,
    build_signal_title,
    format_decimal,
)
from signal_engine.repositories.memory import InMemoryStore, InMemoryUnitOfWork
from signal_engine.repositories.ports import RuleFilter, TenantContext
from tests.helpers import NOW, make_asset, make_point, make_rule

DEFAULT_RECIPIENT = "ops@signalengine.test"


def _push(store: InMemoryStore, metric_id: int, value: Any, tenant_id: int = 1,
          at: datetime = NOW) -> None:
    """Append a committed data point as ingestion would."""
    point = make_point(metric_id, value, tenant_id=tenant_id, timestamp=at)
    store.metric_data.append(replace(point, id=store.next_id("metric_data")))


async def _run(store: InMemoryStore, at: datetime = NOW, rule_filter: Optional[RuleFilter] = None):
    cycle = EvaluationCycle(
        InMemoryUnitOfWork(store, clock=lambda: at),
        default_recipient=DEFAULT_RECIPIENT,
        clock=lambda: at,
    )
    return await cycle.run_cycle(rule_filter)


@pytest.fixture
def btc_store(store: InMemoryStore) -> InMemoryStore:
    """Tenant 1 watching BTC price with a GT 100 rule."""
    store.add_asset(make_asset(id=1, tenant_id=1, identifier="BTC"))
    store.add_rule(make_rule(id=1, tenant_id=1, asset_id=1, operator="GT", threshold="100"))
    return store


# ---------------------------------------------------------------------------
# Firing
# ---------------------------------------------------------------------------
class TestFiring:
    @pytest.mark.asyncio
    async def test_single_breach_fires_and_resets(self, btc_store):
        _push(btc_store, 10, "150")

        result = await _run(btc_store)

        assert result.rules_evaluated == 1
        assert result.signals_created == 1
        assert result.errors == 0

        [signal] = btc_store.signals
        assert signal.tenant_id == 1
        assert signal.rule_id == 1
        assert signal.asset_id == 1
        assert signal.status == "OPEN"
        assert signal.trigger_value == Decimal("150")
        assert signal.threshold_value == Decimal("100")
        assert signal.triggered_at == NOW

        state = btc_store.signal_states[1]
        assert (state.consecutive_breaches, state.is_breached, state.last_metric_value) == (
            0,
            False,
            None,
        )
        assert state.last_evaluated_at == NOW

    @pytest.mark.asyncio
    async def test_exactly_one_notification_queued(self, btc_store):
        """The cycle queues a notification row and never delivers it."""
        _push(btc_store, 10, "150")

        await _run(btc_store)

        [signal] = btc_store.signals
        [notification] = btc_store.notifications
        assert notification.signal_id == signal.id
        assert notification.tenant_id == 1
        assert notification.recipient == "alerts@tenant-one.example"
        assert notification.channel == "EMAIL"
        assert notification.is_sent is False
        assert notification.retry_count == 0
        assert notification.subject == signal.title
        assert notification.body == signal.description

    @pytest.mark.asyncio
    async def test_default_recipient_when_tenant_has_no_email(self, store):
        store.add_asset(make_asset(id=2, tenant_id=2))
        store.add_rule(make_rule(id=2, tenant_id=2, asset_id=2))
        _push(store, 20, "150", tenant_id=2)

        await _run(store)

        assert store.notifications[0].recipient == DEFAULT_RECIPIENT

    @pytest.mark.asyncio
    async def test_non_breach_resets_counter(self, btc_store):
        _push(btc_store, 10, "90")

        result = await _run(btc_store)

        assert result.rules_evaluated == 1
        assert result.signals_created == 0
        state = btc_store.signal_states[1]
        assert state.consecutive_breaches == 0
        assert state.is_breached is False
        assert state.last_metric_value == Decimal("90")

    @pytest.mark.asyncio
    async def test_boundary_value_does_not_breach_strict_operator(self, btc_store):
        _push(btc_store, 10, "100")

        result = await _run(btc_store)

        assert result.signals_created == 0
        assert btc_store.signals == []


# ---------------------------------------------------------------------------
# Consecutive breaches
# ---------------------------------------------------------------------------
class TestConsecutiveBreaches:
    @pytest.mark.asyncio
    async def test_intermittent_success_restarts_count(self, store):
        """breach, breach, ok, breach, breach, breach fires only on the sixth cycle."""
        store.add_asset(make_asset(id=1))
        store.add_rule(make_rule(id=1, consecutive_breaches_required=3))

        fired_at = []
        for n, value in enumerate(["150", "150", "50", "150", "150", "150"], start=1):
            at = NOW + timedelta(minutes=5 * n)
            _push(store, 10, value, at=at)
            result = await _run(store, at=at)
            if result.signals_created:
                fired_at.append(n)

        assert fired_at == [6]
        assert len(store.signals) == 1
        assert len(store.notifications) == 1
        assert store.signal_states[1].consecutive_breaches == 0

    @pytest.mark.asyncio
    async def test_partial_breach_leaves_rule_breaching(self, store):
        store.add_asset(make_asset(id=1))
        store.add_rule(make_rule(id=1, consecutive_breaches_required=3))
        _push(store, 10, "150")

        await _run(store)
        await _run(store, at=NOW + timedelta(minutes=5))

        state = store.signal_states[1]
        assert state.consecutive_breaches == 2
        assert state.is_breached is True
        assert state.last_metric_value == Decimal("150")
        assert store.signals == []

    @pytest.mark.asyncio
    async def test_rerun_after_firing_starts_a_fresh_cycle(self, store):
        """The same breaching value must be seen N more times before firing again."""
        store.add_asset(make_asset(id=1))
        store.add_rule(make_rule(id=1, consecutive_breaches_required=2))
        _push(store, 10, "150")

        results = [await _run(store, at=NOW + timedelta(minutes=n)) for n in range(3)]

        assert [r.signals_created for r in results] == [0, 1, 0]
        assert len(store.signals) == 1
        assert store.signal_states[1].consecutive_breaches == 1

    @pytest.mark.asyncio
    async def test_latest_point_wins(self, btc_store):
        _push(btc_store, 10, "150", at=NOW - timedelta(minutes=1))
        _push(btc_store, 10, "90", at=NOW)

        result = await _run(btc_store)

        assert result.signals_created == 0
        assert btc_store.signal_states[1].last_metric_value == Decimal("90")


# ---------------------------------------------------------------------------
# Tenant isolation and missing data
# ---------------------------------------------------------------------------
class TestIsolation:
    @pytest.mark.asyncio
    async def test_tenants_sharing_identifier_do_not_cross(self, store):
        """Tenant 2's rule never sees tenant 1's points for the same identifier."""
        store.add_asset(make_asset(id=1, tenant_id=1, identifier="BTC"))
        store.add_asset(make_asset(id=2, tenant_id=2, identifier="BTC"))
        store.add_rule(make_rule(id=1, tenant_id=1, asset_id=1))
        store.add_rule(make_rule(id=2, tenant_id=2, asset_id=2))
        _push(store, 10, "150", tenant_id=1)

        result = await _run(store)

        assert result.signals_created == 1
        assert result.rules_skipped == 1
        assert [s.tenant_id for s in store.signals] == [1]
        assert 2 not in store.signal_states

    @pytest.mark.asyncio
    async def test_tenants_with_different_values_fire_with_their_own(self, store):
        """Each tenant's signal carries its own latest value for a shared identifier."""
        store.add_asset(make_asset(id=1, tenant_id=1, identifier="BTC"))
        store.add_asset(make_asset(id=2, tenant_id=2, identifier="BTC"))
        store.add_rule(make_rule(id=1, tenant_id=1, asset_id=1, operator="GT", threshold="100"))
        store.add_rule(make_rule(id=2, tenant_id=2, asset_id=2, operator="GT", threshold="100"))
        _push(store, 10, "150", tenant_id=1)
        _push(store, 20, "200", tenant_id=2)

        result = await _run(store)

        assert result.signals_created == 2
        triggered = {s.tenant_id: s.trigger_value for s in store.signals}
        assert triggered == {1: Decimal("150"), 2: Decimal("200")}
        assert {n.tenant_id for n in store.notifications} == {1, 2}

    @pytest.mark.asyncio
    async def test_rule_pointing_at_foreign_asset_is_skipped(self, btc_store):
        btc_store.add_rule(make_rule(id=2, tenant_id=2, asset_id=1))
        _push(btc_store, 10, "150")

        result = await _run(btc_store)

        assert result.rules_skipped == 1
        assert [s.rule_id for s in btc_store.signals] == [1]

    @pytest.mark.asyncio
    async def test_no_data_skips_without_touching_state(self, btc_store):
        result = await _run(btc_store)

        assert result.rules_skipped == 1
        assert result.rules_evaluated == 0
        assert btc_store.signal_states == {}

    @pytest.mark.asyncio
    async def test_metric_name_matched_case_insensitively(self, store):
        store.add_asset(make_asset(id=1, metric_names=("Price",)))
        store.add_rule(make_rule(id=1, metric_name="PRICE"))
        _push(store, 10, "150")

        result = await _run(store)

        assert result.signals_created == 1

    @pytest.mark.asyncio
    async def test_no_active_rules(self, store):
        store.add_asset(make_asset(id=1))
        store.add_rule(make_rule(id=1, is_active=False))
        _push(store, 10, "150")

        result = await _run(store)

        assert (result.rules_evaluated, result.rules_skipped, result.errors) == (0, 0, 0)


# ---------------------------------------------------------------------------
# Failures and transactions
# ---------------------------------------------------------------------------
class TestFailures:
    @pytest.mark.asyncio
    async def test_rule_error_does_not_stop_cycle(self, btc_store):
        btc_store.add_asset(make_asset(id=2, identifier="ETH"))
        btc_store.add_rule(make_rule(id=2, asset_id=2, name="ETH above 100"))
        _push(btc_store, 10, "150")
        _push(btc_store, 20, "150")

        uow = InMemoryUnitOfWork(btc_store, clock=lambda: NOW)
        original = uow.metric_data.get_latest

        async def _get_latest(tenant_id, asset_id, metric_name):
            if asset_id == 1:
                raise RuntimeError("read failed")
            return await original(tenant_id, asset_id, metric_name)

        cycle = EvaluationCycle(uow, default_recipient=DEFAULT_RECIPIENT, clock=lambda: NOW)
        with patch.object(uow.metric_data, "get_latest", side_effect=_get_latest):
            result = await cycle.run_cycle()

        assert result.errors == 1
        assert result.signals_created == 1
        assert [s.rule_id for s in btc_store.signals] == [2]

    @pytest.mark.asyncio
    async def test_failed_rule_writes_are_discarded(self, btc_store):
        """A notification failure discards the rule's signal and state change."""
        _push(btc_store, 10, "150")
        uow = InMemoryUnitOfWork(btc_store, clock=lambda: NOW)
        cycle = EvaluationCycle(uow, default_recipient=DEFAULT_RECIPIENT, clock=lambda: NOW)

        with patch.object(uow.notifications, "add", side_effect=RuntimeError("queue full")):
            result = await cycle.run_cycle()

        assert result.errors == 1
        assert result.signals_created == 0
        assert btc_store.signals == []
        assert btc_store.notifications == []
        assert btc_store.signal_states == {}

    @pytest.mark.asyncio
    async def test_commit_failure_rolls_back_and_raises(self, btc_store):
        _push(btc_store, 10, "150")
        uow = InMemoryUnitOfWork(btc_store, clock=lambda: NOW)
        cycle = EvaluationCycle(uow, default_recipient=DEFAULT_RECIPIENT, clock=lambda: NOW)

        with patch.object(uow, "commit", side_effect=RuntimeError("db gone")):
            with pytest.raises(CycleCommitError):
                await cycle.run_cycle()

        assert btc_store.signals == []
        assert btc_store.signal_states == {}
        assert uow.staging.signals == []

    @pytest.mark.asyncio
    async def test_cancellation_mid_fire_rolls_back(self, btc_store):
        """Cancelling while a rule is firing leaves no half-written signal."""
        _push(btc_store, 10, "150")
        uow = InMemoryUnitOfWork(btc_store, clock=lambda: NOW)
        cycle = EvaluationCycle(uow, default_recipient=DEFAULT_RECIPIENT, clock=lambda: NOW)
        signal_staged = asyncio.Event()

        async def _slow_email(tenant_id):
            signal_staged.set()
            await asyncio.sleep(10)

        with patch.object(uow.tenants, "get_notification_email", side_effect=_slow_email):
            task = asyncio.create_task(cycle.run_cycle())
            await signal_staged.wait()
            assert len(uow.staging.signals) == 1
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert btc_store.signals == []
        assert btc_store.notifications == []
        assert btc_store.signal_states == {}
        assert uow.staging.signals == []
        assert uow.staging.notifications == []
        assert uow.staging.states == {}


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------
class TestRuleFilter:
    @pytest.mark.asyncio
    async def test_frequency_filter(self, store):
        store.add_asset(make_asset(id=1))
        store.add_rule(make_rule(id=1, evaluation_frequency="5_MIN"))
        store.add_rule(make_rule(id=2, evaluation_frequency="1_HOUR", name="hourly"))
        _push(store, 10, "150")

        result = await _run(store, rule_filter=RuleFilter(evaluation_frequency="5_min"))

        assert result.signals_created == 1
        assert [s.rule_id for s in store.signals] == [1]

    @pytest.mark.asyncio
    async def test_tenant_filter(self, store):
        store.add_asset(make_asset(id=1, tenant_id=1))
        store.add_asset(make_asset(id=2, tenant_id=2))
        store.add_rule(make_rule(id=1, tenant_id=1, asset_id=1))
        store.add_rule(make_rule(id=2, tenant_id=2, asset_id=2))
        _push(store, 10, "150", tenant_id=1)
        _push(store, 20, "150", tenant_id=2)

        result = await _run(store, rule_filter=RuleFilter(tenant=TenantContext.for_tenant(2)))

        assert result.signals_created == 1
        assert [s.tenant_id for s in store.signals] == [2]


# ---------------------------------------------------------------------------
# Signal text
# ---------------------------------------------------------------------------
def test_signal_title_and_description():
    rule = make_rule(name="BTC spike", operator="GTE", threshold="100.50",
                     severity=Severity.CRITICAL)

    assert build_signal_title(rule) == "[CRITICAL] BTC spike: Threshold breached"
    assert build_signal_description(rule, Decimal("150.0000000000")) == (
        "Rule 'BTC spike' triggered: Metric 'price' value (150) "
        "met or exceeded threshold (100.5)."
    )


@pytest.mark.parametrize(
    "value, text",
    [
        (Decimal("150.0000000000"), "150"),
        (Decimal("1E+3"), "1000"),
        (Decimal("-0.000120"), "-0.00012"),
        (Decimal("0"), "0"),
    ],
)
def test_format_decimal(value, text):
    assert format_decimal(value) == text
