"""
=============================================================================
Error Types for the Dental Field Records Client
=============================================================================

Every failure the store and sync core can report. Callers that drive UI
flows catch DentalRecordsError and turn it into a status message; nothing
here is meant to escape to the top of the process.

Date: 2026-10-17
Version: 1.0
=============================================================================
"""


class DentalRecordsError(Exception):
    """Base class for all client errors"""


class StorageUnavailable(DentalRecordsError):
    """Local store could not be opened (fatal until the next open() attempt)"""


class TransactionFailed(DentalRecordsError):
    """A single read or write against the local store failed"""


class RemoteUnreachable(DentalRecordsError):
    """Transport failure, timeout or non-2xx status from the remote backend"""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteRejected(DentalRecordsError):
    """Remote backend answered with success: false"""


class MalformedResponse(DentalRecordsError):
    """Remote payload could not be decoded as the expected JSON object"""

    def __init__(self, message: str, body: str = ''):
        super().__init__(message)
        self.body = body
