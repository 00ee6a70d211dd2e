"""Rule evaluation cycle -- the per-rule breach state machine.

Every active rule (optionally narrowed by frequency or tenant) is evaluated
sequentially against the latest value of its metric:

- No data for the metric: the rule is skipped and its state is not touched.
- Value does not breach: the counter resets to zero.
- Value breaches: the counter increments. When it reaches
  ``consecutive_breaches_required`` one Signal is written, exactly one
  Notification is queued for it, and the state resets to Idle, so the next
  signal needs a full new run of breaches.

Each rule runs inside a savepoint; an exception discards that rule's writes
and counts as an error without stopping the cycle. All surviving writes are
committed once at the end. Re-running a cycle on unchanged data cannot
duplicate a signal because firing resets the counter in the same commit.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional

import structlog

from signal_engine.core.config import settings
from signal_engine.core.enums import NotificationChannel
from signal_engine.core.exceptions import CycleCommitError
from signal_engine.core.utils.clock import utcnow
from signal_engine.domain.entities import MetricDataPoint, Notification, Rule, Signal
from signal_engine.domain.evaluator import describe_operator
from signal_engine.repositories.ports import RuleFilter, UnitOfWork

logger = structlog.get_logger(__name__)


class RuleOutcome(str, Enum):
    EVALUATED = "evaluated"
    SIGNAL_CREATED = "signal_created"
    SKIPPED_NO_DATA = "skipped_no_data"


@dataclass(frozen=True)
class EvaluationResult:
    """Counters for one evaluation cycle.

    ``rules_evaluated`` includes rules that created a signal.
    """

    rules_evaluated: int = 0
    signals_created: int = 0
    rules_skipped: int = 0
    errors: int = 0
    duration_seconds: float = 0.0


def format_decimal(value: Decimal) -> str:
    """Plain notation without trailing zeros (150.0000000000 -> 150)."""
    return format(value.normalize(), "f")


def build_signal_title(rule: Rule) -> str:
    return f"[{rule.severity}] {rule.name}: Threshold breached"


def build_signal_description(rule: Rule, value: Decimal) -> str:
    return (
        f"Rule '{rule.name}' triggered: Metric '{rule.metric_name}' value "
        f"({format_decimal(value)}) {describe_operator(rule.operator)} threshold "
        f"({format_decimal(rule.threshold)})."
    )


class EvaluationCycle:
    """Evaluates active rules and queues notifications for fired signals.

    Args:
        uow: Unit of work for this cycle; committed once at the end.
        default_recipient: Notification address used when the tenant has no
            default notification email.
        clock: Source of evaluation and trigger timestamps.
    """

    def __init__(
        self,
        uow: UnitOfWork,
        default_recipient: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.uow = uow
        self.default_recipient = default_recipient or settings.default_notification_recipient
        self.clock = clock

    async def run_cycle(self, rule_filter: Optional[RuleFilter] = None) -> EvaluationResult:
        started = time.monotonic()
        counts = {outcome: 0 for outcome in RuleOutcome}
        errors = 0

        try:
            rules = await self.uow.rules.get_active(rule_filter)
            if not rules:
                logger.debug("no_active_rules")
                return EvaluationResult(duration_seconds=time.monotonic() - started)

            for rule in rules:
                try:
                    async with self.uow.savepoint():
                        outcome = await self.evaluate_rule(rule)
                except Exception as exc:
                    errors += 1
                    logger.error(
                        "rule_evaluation_failed",
                        rule_id=rule.id,
                        tenant_id=rule.tenant_id,
                        error=str(exc),
                        exc_info=True,
                    )
                    continue
                counts[outcome] += 1
        except (Exception, asyncio.CancelledError):
            await self.uow.rollback()
            raise

        await self._commit()

        signals = counts[RuleOutcome.SIGNAL_CREATED]
        result = EvaluationResult(
            rules_evaluated=counts[RuleOutcome.EVALUATED] + signals,
            signals_created=signals,
            rules_skipped=counts[RuleOutcome.SKIPPED_NO_DATA],
            errors=errors,
            duration_seconds=time.monotonic() - started,
        )
        logger.info(
            "evaluation_cycle_completed",
            rules_evaluated=result.rules_evaluated,
            signals_created=result.signals_created,
            rules_skipped=result.rules_skipped,
            errors=result.errors,
            duration_seconds=round(result.duration_seconds, 3),
        )
        return result

    async def _commit(self) -> None:
        try:
            await self.uow.commit()
        except Exception as exc:
            await self.uow.rollback()
            logger.critical("evaluation_commit_failed", error=str(exc))
            raise CycleCommitError("Evaluation cycle commit failed") from exc

    # ------------------------------------------------------------------
    # Single rule
    # ------------------------------------------------------------------
    async def evaluate_rule(self, rule: Rule) -> RuleOutcome:
        """Advance one rule's breach state against its latest metric value."""
        point = await self.uow.metric_data.get_latest(
            rule.tenant_id, rule.asset_id, rule.metric_name
        )
        if point is None:
            logger.debug("rule_skipped_no_data", rule_id=rule.id, tenant_id=rule.tenant_id)
            return RuleOutcome.SKIPPED_NO_DATA

        now = self.clock()
        state = await self.uow.signal_states.get_or_create(rule.tenant_id, rule.id)

        if not rule.is_breached_by(point.value):
            await self.uow.signal_states.update(state.record_success(point.value, now))
            return RuleOutcome.EVALUATED

        state = state.record_breach(point.value, now)
        if not state.has_reached(rule.consecutive_breaches_required):
            await self.uow.signal_states.update(state)
            logger.debug(
                "rule_breach_recorded",
                rule_id=rule.id,
                consecutive_breaches=state.consecutive_breaches,
                required=rule.consecutive_breaches_required,
            )
            return RuleOutcome.EVALUATED

        signal = await self._create_signal(rule, point, now)
        await self._enqueue_notification(rule, signal)
        await self.uow.signal_states.update(state.reset(now))
        logger.info(
            "signal_created",
            signal_id=signal.id,
            rule_id=rule.id,
            tenant_id=rule.tenant_id,
            severity=rule.severity,
        )
        return RuleOutcome.SIGNAL_CREATED

    async def _create_signal(
        self, rule: Rule, point: MetricDataPoint, now: datetime
    ) -> Signal:
        signal, error = Signal.create(
            tenant_id=rule.tenant_id,
            rule_id=rule.id,
            asset_id=rule.asset_id,
            title=build_signal_title(rule),
            description=build_signal_description(rule, point.value),
            trigger_value=point.value,
            threshold_value=rule.threshold,
            triggered_at=now,
        )
        if error:
            raise ValueError(error)
        return await self.uow.signals.add(signal)

    async def _enqueue_notification(self, rule: Rule, signal: Signal) -> Notification:
        recipient = (
            await self.uow.tenants.get_notification_email(rule.tenant_id)
            or self.default_recipient
        )
        notification, error = Notification.create(
            tenant_id=rule.tenant_id,
            signal_id=signal.id,
            recipient=recipient,
            subject=signal.title,
            body=signal.description or signal.title,
            channel=NotificationChannel.EMAIL,
        )
        if error:
            raise ValueError(error)
        return await self.uow.notifications.add(notification)
