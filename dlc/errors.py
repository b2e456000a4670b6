# dlc/errors.py
"""
Error taxonomy for the DLC core. Nothing here is retried internally;
every error propagates to the embedder.
"""


class DlcError(Exception):
    """Base class for all DLC errors."""


class ValidationError(DlcError):
    """Contract terms violate an invariant. The proposal never becomes signable."""


class NotReadyError(DlcError):
    """Operation invoked out of state-machine order."""


class SignatureCountMismatchError(DlcError):
    """Fewer signatures applied than keys supplied (key/script mismatch)."""


class TxidMismatchError(DlcError):
    """Peer signed a transaction the local side did not derive."""


class OracleReplayError(DlcError):
    """Second message for an event whose nonce is already spent."""


class UnknownEventError(DlcError):
    """No event with this id."""


class InvalidAttestationError(DlcError):
    """Oracle signature does not match the committed event."""


class DecodeError(DlcError):
    """Malformed or truncated wire bytes."""
