import asyncio
from .utils import log_debug, log_info, log_success, log_error, log_stage, format_number

DEFAULT_CONCURRENCY = 4


class ConcurrencyGate:
    """Counting permit pool bounding how many transfers run at once"""

    def __init__(self, limit=DEFAULT_CONCURRENCY):
        if limit < 1:
            raise ValueError(f"Concurrency must be at least 1, got {limit}")
        self.limit = limit
        self._semaphore = asyncio.Semaphore(limit)
        self.active = 0
        self.peak = 0

    async def acquire(self):
        await self._semaphore.acquire()
        self.active += 1
        self.peak = max(self.peak, self.active)

    def release(self):
        self.active -= 1
        self._semaphore.release()


class ReplicationOrchestrator:
    """Runs one collection transfer per collection under a concurrency ceiling.

    The orchestrator takes a permit before spawning each transfer, so it
    suspends while all permits are held. The spawned task owns the permit and
    gives it back when it ends, whatever the outcome. A failed transfer is
    logged and recorded in the results; it never cancels the others.

    Without a timeout, a transfer stalled on a cursor or a write keeps its
    permit for as long as it stalls.
    """

    def __init__(self, source, destination, transfer, concurrency=DEFAULT_CONCURRENCY, timeout=None):
        self.source = source
        self.destination = destination
        self.transfer = transfer
        self.gate = ConcurrencyGate(concurrency)
        self.timeout = timeout

    async def run(self, collections):
        collections = list(collections)
        log_stage(
            f"Replicating {format_number(len(collections))} collections "
            f"from \"{self.source.database_name}\", {self.gate.limit} at a time"
        )

        tasks = []
        for collection_name in collections:
            await self.gate.acquire()
            tasks.append(asyncio.create_task(self._run_transfer(collection_name)))

        return list(await asyncio.gather(*tasks))

    async def _run_transfer(self, collection_name):
        source = self.source.clone()
        destination = self.destination.clone()
        try:
            transfer = self.transfer.transfer_collection(source, destination, collection_name)
            if self.timeout:
                result = await asyncio.wait_for(transfer, self.timeout)
            else:
                result = await transfer
            log_debug(f"Task for collection \"{collection_name}\" finished")
            return result
        except asyncio.TimeoutError:
            message = f"timed out after {self.timeout} seconds"
            log_error(f"Task error for collection \"{collection_name}\": {message}")
            return {"collection": collection_name, "status": "failed", "error": message}
        except Exception as e:
            log_error(f"Task error for collection \"{collection_name}\": {str(e)}")
            return {"collection": collection_name, "status": "failed", "error": str(e)}
        finally:
            self.gate.release()


def failed_collections(results):
    return [result["collection"] for result in results if result.get("status") != "done"]


def summarize(results):
    """Log how many collections succeeded and failed"""
    failed = failed_collections(results)
    done = len(results) - len(failed)
    copied = sum(result.get("copied", 0) for result in results if result.get("status") == "done")

    log_info(
        f"Replication summary: {format_number(done)} collections done, "
        f"{format_number(len(failed))} failed, {format_number(copied)} documents copied"
    )
    if failed:
        log_error(f"Failed collections: {', '.join(failed)}")
    else:
        log_success("All collections replicated")
    return done, len(failed)
