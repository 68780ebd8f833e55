from __future__ import annotations


class RetrievalError(RuntimeError):
    code = "retrieval-error"


class PermissionDeniedError(RetrievalError):
    code = "permission-denied"

    def __init__(self, permission: str) -> None:
        super().__init__(f"{permission} permission not granted")
        self.permission = permission


class NoDocumentsError(RetrievalError):
    code = "no-documents"

    def __init__(self, message: str = "No documents available for indexing") -> None:
        super().__init__(message)


class AbortedError(RetrievalError):
    code = "aborted"

    def __init__(self, message: str = "aborted") -> None:
        super().__init__(message)


class ModelUnavailableError(RetrievalError):
    code = "model-unavailable"


class StoreIOError(RetrievalError):
    code = "store-io"


class MalformedIndexError(RetrievalError):
    code = "malformed-index"
