# Error taxonomy for the ingestion engine.
#
#   TransportError        connection / DNS / TLS failure
#   SchemaMismatch        body did not decode into typed updates
#   UpstreamRejected      the API answered {"ok": false, ...}
#   FatalIngestError      terminal; the stream stops fetching
#   RetryBudgetExhausted  terminal; too many consecutive recoverable errors
#
# A long-poll timeout is not an error and has no class here.


class IngestError(Exception):
    """Base class. `retry_in` is set by the stream when the error is retried."""

    retry_in: float | None = None


class TransportError(IngestError):
    pass


class SchemaMismatch(IngestError):

    def __init__(self, message: str, data: bytes = b"") -> None:
        super().__init__(message)
        self.data = data


class UpstreamRejected(IngestError):

    def __init__(self, description: str, error_code: int | None = None) -> None:
        super().__init__(f"{error_code}: {description}" if error_code is not None else description)
        self.description = description
        self.error_code = error_code


class FatalIngestError(IngestError):

    @property
    def cause(self) -> BaseException | None:
        return self.__cause__


class RetryBudgetExhausted(FatalIngestError):
    pass
