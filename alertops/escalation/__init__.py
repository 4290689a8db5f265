"""Alert escalation policies."""

from alertops.escalation.engine import EscalationEngine, default_policy, select_level

__all__ = ["EscalationEngine", "default_policy", "select_level"]
