from pymongo.errors import PyMongoError
from .utils import log_info, log_success, log_warning

# Index options that describe the index rather than configure it
INDEX_METADATA_FIELDS = ("ns", "v", "key")


class CollectionManager:
    """Handler for collection-level operations around a transfer"""

    @staticmethod
    async def resolve_collections(source, collection=None):
        """Return the collections to replicate.

        An explicit collection name wins; otherwise every collection of the
        source database except the server-managed ``system.*`` ones.
        """
        if collection:
            log_info(f"Restricting replication to collection \"{collection}\"")
            return [collection]

        names = await source.list_collections()
        return [name for name in names if not name.startswith("system.")]

    @staticmethod
    async def copy_indexes(source, destination, collection_name):
        """Recreate the source's secondary indexes on the destination collection"""
        try:
            indexes = await source.index_information(collection_name)
        except PyMongoError as e:
            log_warning(f"Could not read indexes for \"{collection_name}\": {str(e)}")
            return 0

        created = 0
        for index_name, index_info in indexes.items():
            # Skip the default _id index
            if index_name == "_id_":
                continue
            keys = index_info["key"]
            options = {k: v for k, v in index_info.items() if k not in INDEX_METADATA_FIELDS}
            options["name"] = index_name
            try:
                await destination.create_index(collection_name, keys, **options)
                created += 1
            except PyMongoError as e:
                log_warning(f"Could not create index \"{index_name}\" on \"{collection_name}\": {str(e)}")

        if created:
            log_success(f"Copied {created} indexes for collection \"{collection_name}\"")
        return created
