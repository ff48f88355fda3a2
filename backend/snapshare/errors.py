"""Domain errors raised by services and translated to JSON envelopes in main.py."""


class SnapshareError(Exception):
    """Base for all errors that map onto an HTTP error envelope."""

    status_code = 400

    def __init__(self, message: str = ""):
        self.message = message or self.__class__.__doc__ or self.__class__.__name__
        super().__init__(self.message)


class ValidationError(SnapshareError):
    """Malformed or missing input."""


class SizeExceeded(SnapshareError):
    """Requested upload size is over the ceiling."""

    def __init__(self, requested: int, maximum: int):
        self.requested = requested
        self.maximum = maximum
        super().__init__(f"File size {requested} bytes exceeds the maximum of {maximum} bytes")


class RateLimited(SnapshareError):
    """Quota ceiling breached. Carries the denying QuotaDecision."""

    status_code = 429

    def __init__(self, decision):
        self.decision = decision
        super().__init__(
            f"Upload {decision.reason} limit reached for this {decision.window} "
            f"({decision.current}/{decision.max} {decision.unit})"
        )


class ObjectNotFound(SnapshareError):
    """Storage probe found no object (or an empty one) at the given key."""

    def __init__(self, file_key: str):
        self.file_key = file_key
        super().__init__(f"Invalid file key: no uploaded object at '{file_key}'")


class DuplicateKey(SnapshareError):
    """The file key has already been registered."""

    def __init__(self, file_key: str):
        self.file_key = file_key
        super().__init__(f"File key '{file_key}' is already registered")


class StorageUnavailable(SnapshareError):
    """Object storage could not be reached or rejected the request."""

    status_code = 503


class LedgerUnavailable(SnapshareError):
    """Quota counter store failed; the request is refused rather than allowed."""

    status_code = 503


class RegistryUnavailable(SnapshareError):
    """File registry read or write failed."""

    status_code = 503
