class ImporterError(Exception):
    """
    Base class for every error raised by the importer.
    """

    pass


class SkippableImportError(ImporterError):
    """
    Raised by a per-item operation when that one item could not be imported.

    Under the skip-on-error policy the loop records the failure against the
    item and moves on. Otherwise it is promoted to a FatalImportError.
    """

    def __init__(self, message, item_key=None, item_type=None):
        super().__init__(message)
        self.message = message
        self.item_key = item_key
        self.item_type = item_type


class FatalImportError(ImporterError):
    """
    Aborts the current loop invocation and fails the import.
    """

    pass


class TooManySkippedItems(FatalImportError):
    pass


class AttachmentImportFailure(ImporterError):
    """
    Raised when an attachment cannot be fetched or fails validation.

    Callers should include a concise human-readable reason in the exception
    message to aid in debugging and logging.
    """

    pass


class ContentStoreError(ImporterError):
    pass


class ArchiveError(ImporterError):
    pass


class ImportSuspended(ImporterError):
    """
    Raised by the loop executor at a chunk boundary.

    This is not a failure: the continuation says where a later invocation of
    the same import will pick up.
    """

    def __init__(self, continuation):
        super().__init__(f"Import suspended at {continuation.context}")
        self.continuation = continuation
