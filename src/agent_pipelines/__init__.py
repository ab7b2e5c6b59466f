"""Result reconciliation, termination policy and audit logging for agent loops."""

__version__ = "0.3.0"
