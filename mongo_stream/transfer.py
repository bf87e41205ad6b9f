import time
from enum import Enum
from pymongo.errors import PyMongoError
from tqdm import tqdm
from .collection_manager import CollectionManager
from .exceptions import WriteError
from .utils import (
    log_info, log_success, log_error, log_warning, log_stage,
    format_time, format_number
)

DEFAULT_BULK_SIZE = 1000


class TransferPhase(Enum):
    PENDING = "pending"
    RESETTING = "resetting"
    EXTRACTING = "extracting"
    WRITING = "writing"
    DONE = "done"
    FAILED = "failed"


class TransferState:
    """Progress of one collection transfer, owned by the task running it"""

    def __init__(self, collection_name):
        self.collection_name = collection_name
        self.phase = TransferPhase.PENDING
        self.read = 0
        self.copied = 0
        self.rejected = 0
        self.flushes = 0
        self.batch = []


class DataTransfer:
    """Copies the documents of one collection from a source to a destination handle"""

    def __init__(self, bulk=True, bulk_size=DEFAULT_BULK_SIZE, restart=False,
                 verify=False, copy_indexes=False, progress=True):
        if bulk_size < 1:
            raise ValueError(f"Bulk size must be at least 1, got {bulk_size}")
        self.bulk = bulk
        self.bulk_size = bulk_size
        self.restart = restart
        self.verify = verify
        self.copy_indexes = copy_indexes
        self.progress = progress
        self._positions = set()

    async def transfer_collection(self, source, destination, collection_name):
        """Stream every document of a collection from source to destination.

        Rejected documents are counted and the transfer carries on, but the
        transfer still ends with a WriteError so the failure is reported.
        Cursor and connection errors end the transfer immediately. Nothing
        already written is rolled back.
        """
        state = TransferState(collection_name)
        start_time = time.time()
        log_stage(f"Starting transfer for collection \"{collection_name}\"")

        try:
            if self.restart:
                state.phase = TransferPhase.RESETTING
                log_info(f"Dropping destination collection \"{collection_name}\" before copying")
                await destination.drop_collection(collection_name)

            total = await self._estimate_source(source, collection_name) if self.progress else None

            state.phase = TransferPhase.EXTRACTING
            documents = source.cursor(collection_name)
            position = self._claim_position()

            try:
                with tqdm(total=total, desc=collection_name, unit="docs", position=position,
                          disable=not self.progress, leave=False) as pbar:
                    async for document in documents:
                        state.phase = TransferPhase.WRITING
                        state.read += 1
                        if self.bulk:
                            state.batch.append(document)
                            if len(state.batch) >= self.bulk_size:
                                await self._flush(destination, state, pbar)
                        else:
                            await self._write_one(destination, state, document, pbar)

                    await self._flush(destination, state, pbar)
            finally:
                self._positions.discard(position)
                await documents.aclose()

        except Exception as e:
            state.phase = TransferPhase.FAILED
            log_error(
                f"Transfer failed for collection \"{collection_name}\" after "
                f"{format_number(state.copied)} documents: {str(e)}"
            )
            raise

        duration = time.time() - start_time

        if state.rejected:
            state.phase = TransferPhase.FAILED
            raise WriteError(
                f"{format_number(state.rejected)} documents rejected while copying \"{collection_name}\" "
                f"({format_number(state.copied)} written)",
                collection_name, inserted_count=state.copied
            )

        state.phase = TransferPhase.DONE
        rate = state.copied / duration if duration > 0 else 0

        log_success(
            f"Transfer completed for collection \"{collection_name}\":\n"
            f"  • Copied:   {format_number(state.copied)}\n"
            f"  • Flushes:  {format_number(state.flushes)}\n"
            f"  • Duration: {format_time(duration)}\n"
            f"  • Rate:     {format_number(int(rate))} docs/sec"
        )

        result = {
            "collection": collection_name,
            "status": TransferPhase.DONE.value,
            "copied": state.copied,
            "rejected": state.rejected,
            "flushes": state.flushes,
            "duration": duration,
            "rate": rate
        }

        if self.copy_indexes:
            await CollectionManager.copy_indexes(source, destination, collection_name)

        if self.verify:
            verified, source_count, destination_count = await self.verify_transfer(
                source, destination, collection_name
            )
            result.update({
                "verified": verified,
                "source_count": source_count,
                "destination_count": destination_count
            })

        return result

    def _claim_position(self):
        """Lowest terminal line not used by another running transfer's bar"""
        position = 0
        while position in self._positions:
            position += 1
        self._positions.add(position)
        return position

    async def _estimate_source(self, source, collection_name):
        try:
            total = await source.estimated_document_count(collection_name)
            log_info(f"Found {format_number(total)} documents to copy in \"{collection_name}\"")
            return total
        except PyMongoError as e:
            log_warning(f"Failed to count documents in \"{collection_name}\": {str(e)}")
            return None

    async def _flush(self, destination, state, pbar):
        if not state.batch:
            return
        batch, state.batch = state.batch, []
        state.flushes += 1
        try:
            written = await destination.insert_many(state.collection_name, batch)
        except WriteError as e:
            written = e.inserted_count
            state.rejected += len(e.failed_indices) or len(batch) - written
            log_error(
                f"Bulk write {state.flushes} to \"{state.collection_name}\" rejected "
                f"{len(batch) - written} of {len(batch)} documents: {e.message}"
            )
        state.copied += written
        pbar.update(written)

    async def _write_one(self, destination, state, document, pbar):
        try:
            await destination.insert_one(state.collection_name, document)
        except WriteError as e:
            state.rejected += 1
            log_error(f"Document {state.read} of \"{state.collection_name}\" rejected: {e.message}")
            return
        state.copied += 1
        pbar.update(1)

    async def verify_transfer(self, source, destination, collection_name):
        """Verify by comparing document counts."""
        try:
            log_info(f"Verifying transfer for collection \"{collection_name}\"...")
            source_count = await source.count_documents(collection_name)
            destination_count = await destination.count_documents(collection_name)

            if source_count == destination_count:
                log_success(f"Verification successful: {format_number(source_count)} documents")
                return True, source_count, destination_count

            log_warning(
                f"Verification mismatch for \"{collection_name}\":\n"
                f"  • Source:      {format_number(source_count)}\n"
                f"  • Destination: {format_number(destination_count)}"
            )
            return False, source_count, destination_count

        except PyMongoError as e:
            log_error(f"Failed to verify transfer: {str(e)}")
            return False, 0, 0
