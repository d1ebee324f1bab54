"""
Drive audit CLI -- command surface over the audit orchestrator.

Each command maps onto one controller operation: start, resume, status,
cancel, schedule, unschedule, plus ``worker`` which runs the continuation
runner.

Entry point: ``drive-audit`` or python -m scripts.cli
"""

from scripts.cli.main import main

__all__ = ["main"]
