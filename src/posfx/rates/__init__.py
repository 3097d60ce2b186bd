"""Rate orchestration -- manager state machine, subscriptions, and auto refresh."""

from posfx.rates.manager import RateManager
from posfx.rates.notifier import RateNotifier
from posfx.rates.scheduler import AutoUpdater

__all__ = ["AutoUpdater", "RateManager", "RateNotifier"]
