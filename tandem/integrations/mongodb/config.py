"""MongoDB configuration using pydantic-settings."""

from functools import cached_property
from typing import Any

from pydantic_settings import BaseSettings
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.asynchronous.mongo_client import AsyncMongoClient


class MongoConfiguration(BaseSettings):
    """Configuration and factory for MongoDB resources.

    Implements the HasLifecycle protocol so that `Persistence` closes the
    client on shutdown.

    All settings can be configured via environment variables with the
    TANDEM_MONGO_ prefix. For example:
    - TANDEM_MONGO_URI=mongodb://localhost:27017/?replicaSet=rs0
    - TANDEM_MONGO_DATABASE=coaching

    Multi-document transactions require a replica set or a sharded cluster.

    Attributes:
        uri: MongoDB connection URI.
        database: Database name to use.
        collection_prefix: Prepended to every table name, e.g. "app_" maps
            table "focus_areas" to collection "app_focus_areas".

    Example:
        >>> config = MongoConfiguration()
        >>> storage = MongoStorageClient(config)
        >>>
        >>> # With PersistenceBuilder (lifecycle managed automatically)
        >>> persistence = (
        ...     PersistenceBuilder()
        ...     .use_storage(storage)
        ...     .register_dependency(config)
        ...     .build()
        ... )
        >>> async with persistence:  # calls on_startup/on_shutdown
        ...     ...
    """

    uri: str = "mongodb://localhost:27017"
    database: str = "tandem"
    collection_prefix: str = ""

    model_config = {"env_prefix": "TANDEM_MONGO_"}

    @cached_property
    def client(self) -> AsyncMongoClient[dict[str, Any]]:
        """Get the MongoDB async client.

        The client is lazily created and cached for reuse.
        """
        return AsyncMongoClient(self.uri)

    @cached_property
    def db(self) -> AsyncDatabase[dict[str, Any]]:
        """Get the MongoDB async database."""
        return self.client[self.database]

    def collection(self, table_name: str) -> AsyncCollection[dict[str, Any]]:
        """Get the collection backing a table."""
        return self.db[f"{self.collection_prefix}{table_name}"]

    # HasLifecycle protocol implementation

    async def on_startup(self) -> None:
        """Called when the application starts.

        No-op for MongoDB - connections are established lazily.
        """
        pass

    async def on_shutdown(self) -> None:
        """Called when the application shuts down.

        Closes the MongoDB client connection if it was created.
        """
        if "client" in self.__dict__:
            await self.client.close()
