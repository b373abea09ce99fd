"""Error kinds surfaced by the scoring engine and the ledger adapters."""


class LedgerError(Exception):
    """Base error carrying a machine-readable kind and an HTTP status."""

    kind = 'internal'
    status_code = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {'error': self.message, 'kind': self.kind}


class NotFoundError(LedgerError):
    kind = 'not_found'
    status_code = 404


class ValidationError(LedgerError):
    kind = 'validation'
    status_code = 400


class ConflictError(LedgerError):
    kind = 'conflict'
    status_code = 409


class StorageError(LedgerError):
    kind = 'storage'
    status_code = 500


class AuthorizationError(LedgerError):
    kind = 'forbidden'
    status_code = 403
