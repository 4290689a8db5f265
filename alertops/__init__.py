"""alertops — alert rules, notification delivery and incident response."""

__version__ = "0.1.0"
