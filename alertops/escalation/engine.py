"""EscalationEngine — time-based escalation of unacknowledged alerts."""

from __future__ import annotations

import time
from collections.abc import Iterable
from dataclasses import dataclass

import structlog

from alertops.core.config import EscalationConfig
from alertops.core.types import (
    Alert,
    AlertNotification,
    AlertStatus,
    Clock,
    EscalationLevel,
    EscalationPolicy,
)
from alertops.notify.dispatcher import NotificationDispatcher
from alertops.notify.formatters import format_escalation_message

logger = structlog.get_logger(__name__)

DEFAULT_POLICY_ID = "default_escalation"


def default_policy() -> EscalationPolicy:
    """Three-tier policy: on-call at 5 min, seniors at 15, manager at 30."""
    return EscalationPolicy(
        id=DEFAULT_POLICY_ID,
        name="Default Escalation Policy",
        description="Default escalation for critical alerts",
        levels=[
            EscalationLevel(level=1, timeout=300, targets=["on-call-engineer"]),
            EscalationLevel(level=2, timeout=900, targets=["senior-engineer", "team-lead"]),
            EscalationLevel(level=3, timeout=1800, targets=["engineering-manager"]),
        ],
        repeat_interval=3600,
        max_escalations=3,
    )


def select_level(policy: EscalationPolicy, age: float) -> EscalationLevel | None:
    """Highest level whose timeout the alert's age has reached.

    Levels are scanned in order and the scan stops at the first level not
    yet reached.
    """
    selected: EscalationLevel | None = None
    for level in policy.levels:
        if age >= level.timeout:
            selected = level
        else:
            break
    return selected


@dataclass
class _EscalationState:
    level: int
    fired_at: float
    count: int = 1


class EscalationEngine:
    """Sends escalation notifications for alerts left active too long.

    With ``repeat_every_tick`` the current level is re-sent on every check.
    Otherwise each level fires once per alert; the top level re-fires
    after the policy's ``repeat_interval`` until ``max_escalations``
    notifications rounds have gone out.
    """

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        config: EscalationConfig | None = None,
        default_policy_id: str = DEFAULT_POLICY_ID,
        clock: Clock = time.time,
    ) -> None:
        self._dispatcher = dispatcher
        self._config = config or EscalationConfig()
        self._default_policy_id = default_policy_id
        self._clock = clock
        self._policies: dict[str, EscalationPolicy] = {}
        self._state: dict[str, _EscalationState] = {}
        self.create_policy(default_policy())

    # ── Policies ────────────────────────────────────────────────

    def create_policy(self, policy: EscalationPolicy) -> EscalationPolicy:
        policy.levels.sort(key=lambda lv: lv.timeout)
        self._policies[policy.id] = policy
        return policy

    def update_policy(self, policy_id: str, **changes: object) -> EscalationPolicy | None:
        policy = self._policies.get(policy_id)
        if policy is None:
            return None
        return self.create_policy(policy.model_copy(update=changes))

    def get_policy(self, policy_id: str) -> EscalationPolicy | None:
        return self._policies.get(policy_id)

    def get_policies(self) -> list[EscalationPolicy]:
        return list(self._policies.values())

    def policy_for(self, alert: Alert) -> EscalationPolicy | None:
        override = alert.metadata.get("escalation_policy")
        if override and override in self._policies:
            return self._policies[override]
        return self._policies.get(self._default_policy_id)

    # ── Checking ────────────────────────────────────────────────

    def check(
        self, alerts: Iterable[Alert], now: float | None = None,
    ) -> list[AlertNotification]:
        """Escalate every active alert older than the age threshold."""
        t = self._clock() if now is None else now
        queued: list[AlertNotification] = []
        for alert in alerts:
            if alert.status != AlertStatus.ACTIVE:
                self.forget(alert.id)
                continue
            age = t - alert.timestamp
            if age <= self._config.alert_age_threshold_secs:
                continue
            policy = self.policy_for(alert)
            if policy is None:
                logger.warning("escalation_policy_missing", alert_id=alert.id)
                continue
            level = select_level(policy, age)
            if level is None or not self._should_fire(alert.id, policy, level, t):
                continue
            queued.extend(self._dispatcher.enqueue(
                alert,
                level.channels,
                message=format_escalation_message(alert, level.level),
                escalation_level=level.level,
            ))
            logger.info(
                "alert_escalated",
                alert_id=alert.id,
                policy=policy.id,
                level=level.level,
                targets=level.targets,
            )
        return queued

    def _should_fire(
        self, alert_id: str, policy: EscalationPolicy, level: EscalationLevel, now: float,
    ) -> bool:
        state = self._state.get(alert_id)
        if self._config.repeat_every_tick:
            self._state[alert_id] = _EscalationState(
                level=level.level, fired_at=now, count=(state.count + 1) if state else 1,
            )
            return True
        if state is None or level.level > state.level:
            self._state[alert_id] = _EscalationState(
                level=level.level, fired_at=now, count=(state.count + 1) if state else 1,
            )
            return True
        top = policy.levels[-1].level
        if (
            level.level == top
            and state.count < policy.max_escalations
            and now - state.fired_at >= policy.repeat_interval
        ):
            state.fired_at = now
            state.count += 1
            return True
        return False

    def forget(self, alert_id: str) -> None:
        """Drop escalation state for an alert that left the active set."""
        self._state.pop(alert_id, None)

    def escalation_count(self, alert_id: str) -> int:
        state = self._state.get(alert_id)
        return state.count if state else 0
