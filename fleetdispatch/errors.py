class FleetError(Exception):
    """Base class for errors reported to callers of the fleet services."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(FleetError):
    """A required field is missing or malformed. Raised before storage is touched."""

    status_code = 422


class NotFound(FleetError):
    status_code = 404


class PersistenceError(FleetError):
    """Storage unreachable, conflict retries exhausted, or commit failed.

    The operation that raised it left no partial state behind.
    """

    status_code = 503


class DeserializationError(FleetError):
    """A stored command payload could not be decoded.

    Only ever concerns a single command; claim_pending logs it and hands the
    raw text to the agent instead of failing the batch.
    """

    def __init__(self, command_id: int, raw: str, reason: str):
        super().__init__(f"command {command_id}: undecodable payload ({reason})")
        self.command_id = command_id
        self.raw = raw
