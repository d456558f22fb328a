"""Exceptions raised by the monitoring engine."""


class MonitoringError(Exception):
    pass


class ProviderError(MonitoringError):
    """Provider aggregator failed; transient, retried on the next tick."""


class MonitoringInvariantError(MonitoringError):
    """A monitored search is in a state the engine cannot process."""


class InvalidPrioritiesError(MonitoringInvariantError):
    pass


class SearchNotFoundError(MonitoringError):
    pass


class SearchStoppedError(MonitoringError):
    """Lifecycle change requested on a stopped (terminal) search."""
