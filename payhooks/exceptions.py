"""Error taxonomy for the webhook pipeline.

The ingestor turns these into ProcessResult.error_code values instead of
raising them to its caller. Duplicate deliveries are not errors from the
caller's point of view: DuplicateKeyError is only the store's signal.
"""

# Postgres SQLSTATE for unique_violation. Used as the store-neutral code.
UNIQUE_VIOLATION = "23505"


class WebhookError(Exception):
    """Base class for webhook pipeline errors."""

    error_code = "webhook_error"


class InvalidPayload(WebhookError):
    """Event is missing its identifier or type. Rejected before persistence."""

    error_code = "invalid_payload"


class PersistenceFailure(WebhookError):
    """A store insert/select/update failed for a reason other than a duplicate."""

    error_code = "persistence_failure"

    def __init__(self, message, code=None):
        super().__init__(message)
        self.code = code


class DuplicateKeyError(PersistenceFailure):
    """Insert rejected by a unique constraint."""

    def __init__(self, message, code=UNIQUE_VIOLATION):
        super().__init__(message, code=code)


class RouterFailure(WebhookError):
    """A domain handler raised while processing an event."""

    error_code = "router_failure"
