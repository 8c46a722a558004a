"""Error types raised by the interchain relay."""


class RelayError(Exception):
    """Base class for relay errors."""


class TransientReadError(RelayError):
    """A single block, receipt or log query failed."""


class DecodeError(RelayError):
    """A log payload does not have the expected event shape."""


class SigningError(RelayError):
    """The private key is invalid or the signing primitive failed."""


class MalformedSignatureError(RelayError):
    """A raw signature is not exactly 65 bytes."""


class SubmissionError(RelayError):
    """A transaction was rejected, reverted or could not be sent."""


class QueryError(RelayError):
    """A contract read (call or event query) failed."""


class LedgerConnectionError(RelayError, ConnectionError):
    """A ledger endpoint cannot be reached at all."""
