"""MongoDB integration for tandem repositories.

This module provides a MongoDB implementation of the StorageClient
interface using the async PyMongo driver.

Usage:
    >>> from tandem.integrations.mongodb import MongoConfiguration, MongoStorageClient
    >>>
    >>> config = MongoConfiguration(
    ...     uri="mongodb://localhost:27017/?replicaSet=rs0",
    ...     database="coaching",
    ... )
    >>> storage = MongoStorageClient(config)
"""

from .config import MongoConfiguration
from .storage import MongoStorageClient, MongoTable, MongoTransaction, to_storage_error

__all__ = [
    "MongoConfiguration",
    "MongoStorageClient",
    "MongoTable",
    "MongoTransaction",
    "to_storage_error",
]
