class StreamError(Exception):
    def __init__(self, message, collection=None):
        self.message = message
        self.collection = collection
        super().__init__(self.message)


class DatabaseConnectionError(StreamError):
    """Endpoint unreachable, URI malformed, or the connection dropped mid-operation"""


class EnumerationError(StreamError):
    """Server refused or failed to list collections"""


class CursorError(StreamError):
    """Reading from a source cursor broke mid-stream"""


class WriteError(StreamError):
    """One or more documents were rejected by the destination"""

    def __init__(self, message, collection=None, failed_indices=None, inserted_count=0):
        self.failed_indices = list(failed_indices or [])
        self.inserted_count = inserted_count
        super().__init__(message, collection)
