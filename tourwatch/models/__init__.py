from tourwatch.models.monitoring import (
    MonitoredSearch,
    NotificationEvent,
    ResultSnapshot,
    SavedSearchQuery,
)

__all__ = [
    "MonitoredSearch",
    "NotificationEvent",
    "ResultSnapshot",
    "SavedSearchQuery",
]
