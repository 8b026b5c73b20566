"""
starklet/errors.py
==================
Error taxonomy shared by the handshake service, the HTTP layer and the CLI.

Every error carries a ``kind`` so it can be flattened into a failure Result
and, from there, into the ``{success: false, error}`` envelope.
"""


class StarkletError(Exception):
    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(StarkletError):
    kind = "validation"


class NotFoundError(StarkletError):
    kind = "not_found"


class InvalidSignatureError(StarkletError):
    kind = "invalid_signature"


class StoreError(StarkletError):
    kind = "store"


class ChainError(StarkletError):
    kind = "chain"


# ── Client side ───────────────────────────────────────────────────────────────

class SessionRejectedError(StarkletError):
    kind = "rejected"


class PollingTimeoutError(StarkletError):
    kind = "timeout"
