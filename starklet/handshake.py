"""
starklet/handshake.py
=====================
Session handshake between the CLI, the server and the browser wallet.

    pending --[complete_session]--> completed

Every public operation returns a Result instead of raising, so the HTTP layer
and the CLI only ever deal with ``Result.ok`` / ``Result.error``.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from starklet import keys
from starklet.database import STATUS_PENDING, SessionStore
from starklet.errors import (
    InvalidSignatureError,
    NotFoundError,
    StarkletError,
    ValidationError,
)

logger = logging.getLogger(__name__)

SESSION_ID_CHUNK = 31
INVALID_SESSION = "Invalid session"


@dataclass(frozen=True)
class Result:
    ok: Any = None
    error: str | None = None
    message: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    @classmethod
    def success_with(cls, data: Any) -> "Result":
        return cls(ok=data)

    @classmethod
    def failure(cls, kind: str, message: str) -> "Result":
        return cls(error=kind, message=message)

    def to_envelope(self) -> dict:
        if self.success:
            return {"success": True, "data": self.ok}
        return {"success": False, "error": self.message}


class MessageVerifier(Protocol):
    def verify_message(self, account_address: str, typed_data: dict, signature: Any) -> bool: ...


# ── Typed data ───────────────────────────────────────────────────────────────

def split_session_id(session_id: str) -> list[str]:
    """Felt-sized (<= 31 chars) chunks, as the browser step signs them."""
    return re.findall(r".{1,%d}" % SESSION_ID_CHUNK, session_id)


def join_session_id(chunks: list[str]) -> str:
    if not isinstance(chunks, list) or not all(isinstance(c, str) for c in chunks):
        raise ValidationError("Invalid message data")
    if any(len(chunk) > SESSION_ID_CHUNK for chunk in chunks):
        raise ValidationError("Invalid message data")
    return "".join(chunks)


def build_typed_data(session_id: str, token: str, timestamp: int, chain_id: str = "SN_SEPOLIA") -> dict:
    return {
        "message": {
            "sessionId": split_session_id(session_id),
            "token": token,
            "timestamp": str(timestamp),
        },
        "types": {
            "StarkNetDomain": [
                {"name": "name", "type": "string"},
                {"name": "version", "type": "string"},
                {"name": "chainId", "type": "string"},
            ],
            "Session": [
                {"name": "sessionId", "type": "string*"},
                {"name": "token", "type": "string"},
                {"name": "timestamp", "type": "string"},
            ],
        },
        "primaryType": "Session",
        "domain": {
            "name": "Starklet",
            "version": "1",
            "chainId": chain_id,
        },
    }


def _check_message_binding(session: dict, typed_data: Any) -> None:
    message = typed_data.get("message") if isinstance(typed_data, dict) else None
    if not isinstance(message, dict):
        raise ValidationError("Invalid message data")

    if message.get("token") != session["session_token"]:
        raise ValidationError("Invalid message data")
    if join_session_id(message.get("sessionId")) != session["id"]:
        raise ValidationError("Invalid message data")


def _require_text(value: Any, name: str) -> str:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"Missing {name}")
    if isinstance(value, (dict, list)):
        raise ValidationError(f"Invalid {name}")
    return str(value)


# ── Service ──────────────────────────────────────────────────────────────────

class HandshakeService:
    def __init__(self, store: SessionStore, verifier: MessageVerifier):
        self.store = store
        self.verifier = verifier

    def _run(self, operation: str, fallback: str, func: Callable[[], Any]) -> Result:
        try:
            return Result.success_with(func())
        except StarkletError as exc:
            logger.warning("%s rejeitada — %s: %s", operation, exc.kind, exc.message)
            return Result.failure(exc.kind, exc.message)
        except Exception as exc:
            logger.error("%s: erro inesperado — %s", operation, exc, exc_info=True)
            return Result.failure("error", fallback)

    # 1. CreateSession
    def create_session(self, full_public_key, session_token, signature, public_key=None) -> Result:
        def _create():
            if not isinstance(signature, dict):
                raise ValidationError("Missing signature")
            fields = {
                "full_public_key": _require_text(full_public_key, "fullPublicKey"),
                "session_token": _require_text(session_token, "sessionToken"),
                "signature_r": _require_text(signature.get("r"), "signature.r"),
                "signature_s": _require_text(signature.get("s"), "signature.s"),
                "public_key": None if public_key is None else _require_text(public_key, "publicKey"),
            }
            created = self.store.create(fields)
            if not keys.verify_token_signature(fields["session_token"], signature, fields["full_public_key"]):
                logger.warning("Auditoria: assinatura do token da sessão %s não confere com a chave pública.", created["id"])
            return created

        return self._run("CreateSession", "Failed to create session", _create)

    # 2. VerifySession
    def verify_session(self, session_id, token) -> Result:
        def _verify():
            if not session_id or not token:
                raise ValidationError("Missing sessionId or token")
            session = self.store.get_by_id_and_token(str(session_id), str(token))
            if session is None:
                raise NotFoundError(INVALID_SESSION)
            return session

        return self._run("VerifySession", "Failed to verify session", _verify)

    # 3. FetchPending
    def fetch_pending(self, account_address) -> Result:
        def _fetch():
            if not account_address:
                raise ValidationError("Missing accountAddress parameter")
            return self.store.get_pending_by_account(str(account_address))

        return self._run("FetchPending", "Failed to fetch pending sessions", _fetch)

    # 4. CompleteSession
    def complete_session(self, session_id, account_address, signature, typed_data) -> Result:
        def _complete():
            if not session_id:
                raise ValidationError("Missing sessionId")
            address = _require_text(account_address, "accountAddress")
            if signature is None or typed_data is None:
                raise ValidationError("Missing signature or typedData")

            session = self.store.get_by_id(str(session_id))
            if session is None:
                raise NotFoundError(INVALID_SESSION)

            _check_message_binding(session, typed_data)

            if session["status"] != STATUS_PENDING:
                raise ValidationError("Session already completed")

            if not self.verifier.verify_message(address, typed_data, signature):
                raise InvalidSignatureError("Invalid signature")

            updated = self.store.update_to_completed(session["id"], address)
            if updated is None:
                raise NotFoundError(INVALID_SESSION)
            return updated

        return self._run("CompleteSession", "Failed to update session", _complete)
