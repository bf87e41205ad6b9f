from bson.errors import BSONError
from bson.raw_bson import RawBSONDocument
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import (
    BulkWriteError, ConfigurationError, ConnectionFailure, PyMongoError,
    WriteError as PyMongoWriteError
)
from .exceptions import CursorError, DatabaseConnectionError, EnumerationError, WriteError
from .utils import log_info, log_success, log_error, log_debug


class MongoDBClient:
    """Handle on one database behind a shared motor connection pool.

    A handle is created once per side with ``connect`` and then duplicated for
    each concurrent task with ``clone``. Clones share the pool of the handle
    they came from; only the original handle closes it.
    """

    def __init__(self, client, database_name, label="database", owner=True):
        self.client = client
        self.database_name = database_name
        self.label = label
        self.db = client[database_name]
        self._owner = owner

    @classmethod
    async def connect(cls, uri, database_name, label="database", server_selection_timeout_ms=30000):
        """Open a connection pool and check that the server answers a ping"""
        log_info(f"Connecting to {label} database \"{database_name}\"...")
        try:
            # Raw documents are relayed byte for byte, without decoding their values
            client = AsyncIOMotorClient(
                uri, serverSelectionTimeoutMS=server_selection_timeout_ms, document_class=RawBSONDocument
            )
        except (ConfigurationError, ValueError, TypeError) as e:
            log_error(f"Invalid {label} URI: {str(e)}")
            raise DatabaseConnectionError(f"Invalid {label} URI: {str(e)}") from e

        handle = cls(client, database_name, label=label)
        if not await handle.test_connection():
            client.close()
            raise DatabaseConnectionError(f"Failed to connect to {label} database \"{database_name}\"")
        return handle

    async def test_connection(self):
        """Test the connection to MongoDB"""
        try:
            await self.client.admin.command("ping")
            log_success(f"Successfully connected to {self.label} database \"{self.database_name}\"")
            return True
        except PyMongoError as e:
            log_error(f"Failed to connect to {self.label}: {str(e)}")
            return False

    def clone(self):
        """Lightweight handle on the same pool, for use by another task"""
        return MongoDBClient(self.client, self.database_name, label=self.label, owner=False)

    def close(self):
        if self._owner:
            self.client.close()

    async def list_collections(self):
        """List all collections in the database"""
        try:
            log_info(f"Listing collections in {self.label} database \"{self.database_name}\"...")
            names = await self.db.list_collection_names()
            log_success(f"Found {len(names)} collections: {', '.join(names)}")
            return names
        except PyMongoError as e:
            log_error(f"Failed to list collections in \"{self.database_name}\": {str(e)}")
            raise EnumerationError(f"Failed to list collections in \"{self.database_name}\": {str(e)}") from e

    async def cursor(self, collection_name):
        """Yield every document of a collection in storage order"""
        try:
            async for document in self.db[collection_name].find({}):
                yield document
        except ConnectionFailure as e:
            raise DatabaseConnectionError(
                f"Lost connection to {self.label} while reading \"{collection_name}\": {str(e)}",
                collection_name
            ) from e
        except (PyMongoError, BSONError) as e:
            raise CursorError(f"Cursor on \"{collection_name}\" failed: {str(e)}", collection_name) from e

    async def insert_one(self, collection_name, document):
        try:
            await self.db[collection_name].insert_one(document)
        except ConnectionFailure as e:
            raise DatabaseConnectionError(
                f"Lost connection to {self.label} while writing \"{collection_name}\": {str(e)}",
                collection_name
            ) from e
        except PyMongoWriteError as e:
            raise WriteError(
                f"Document rejected by \"{collection_name}\": {str(e)}",
                collection_name, failed_indices=[0], inserted_count=0
            ) from e

    async def insert_many(self, collection_name, documents):
        """Write all documents in one unordered batch.

        A server-side rejection of part of the batch raises WriteError with the
        indices of the rejected documents and the number the server accepted.
        """
        if not documents:
            return 0
        try:
            result = await self.db[collection_name].insert_many(documents, ordered=False)
            return len(result.inserted_ids)
        except ConnectionFailure as e:
            raise DatabaseConnectionError(
                f"Lost connection to {self.label} while writing \"{collection_name}\": {str(e)}",
                collection_name
            ) from e
        except BulkWriteError as e:
            details = e.details or {}
            failed = [error.get("index") for error in details.get("writeErrors", []) if "index" in error]
            inserted = details.get("nInserted", len(documents) - len(failed))
            raise WriteError(
                f"{len(failed)} of {len(documents)} documents rejected by \"{collection_name}\"",
                collection_name, failed_indices=failed, inserted_count=inserted
            ) from e

    async def drop_collection(self, collection_name):
        """Drop a collection; dropping a missing collection is a no-op"""
        try:
            log_debug(f"Dropping {self.label} collection \"{collection_name}\"")
            await self.db[collection_name].drop()
        except ConnectionFailure as e:
            raise DatabaseConnectionError(
                f"Lost connection to {self.label} while dropping \"{collection_name}\": {str(e)}",
                collection_name
            ) from e

    async def count_documents(self, collection_name):
        return await self.db[collection_name].count_documents({})

    async def estimated_document_count(self, collection_name):
        """Document count from collection metadata, without a scan"""
        return await self.db[collection_name].estimated_document_count()

    async def index_information(self, collection_name):
        return await self.db[collection_name].index_information()

    async def create_index(self, collection_name, keys, **options):
        return await self.db[collection_name].create_index(keys, **options)


async def get_source_destination_clients(source_uri, destination_uri, database_name):
    """Initialize both source and destination handles"""
    try:
        source = await MongoDBClient.connect(source_uri, database_name, label="source")
    except DatabaseConnectionError as e:
        log_error(f"Failed to initialize clients: {e.message}")
        raise
    try:
        destination = await MongoDBClient.connect(destination_uri, database_name, label="destination")
    except DatabaseConnectionError as e:
        source.close()
        log_error(f"Failed to initialize clients: {e.message}")
        raise
    return source, destination
