"""FinOps SLA Monitor: deadline monitoring and alert lifecycle engine."""

__version__ = "1.0.0"
