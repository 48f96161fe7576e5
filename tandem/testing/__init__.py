from .fakes import (
    EventCollector,
    FlakyStorageClient,
    FlakyTable,
    FlakyTransaction,
    RecordingCacheInvalidator,
)

__all__ = [
    "EventCollector",
    "FlakyStorageClient",
    "FlakyTable",
    "FlakyTransaction",
    "RecordingCacheInvalidator",
]
