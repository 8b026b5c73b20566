import logging
import uuid
from unittest.mock import MagicMock

import pytest

from starklet.errors import StoreError
from starklet.handshake import (
    HandshakeService,
    Result,
    build_typed_data,
    join_session_id,
    split_session_id,
)

VALID_SIG = ["0x1", "0x2"]


def _create(service, token="tok-123"):
    result = service.create_session(
        full_public_key="0x04" + "ab" * 64,
        session_token=token,
        signature={"r": "111", "s": "222"},
        public_key="0x02" + "ab" * 32,
    )
    assert result.success, result.message
    return result.ok


def _complete(service, session, address="0xABC", signature=VALID_SIG, typed_data=None):
    typed_data = typed_data or build_typed_data(session["id"], session["session_token"], 1700000000)
    return service.complete_session(session["id"], address, signature, typed_data)


class TestSessionIdChunks:
    def test_uuid_splits_in_31_and_5(self):
        session_id = str(uuid.uuid4())
        chunks = split_session_id(session_id)
        assert [len(c) for c in chunks] == [31, 5]
        assert join_session_id(chunks) == session_id

    def test_join_rejects_oversized_chunk(self):
        with pytest.raises(Exception, match="Invalid message data"):
            join_session_id(["x" * 32])

    def test_join_rejects_non_list(self):
        with pytest.raises(Exception, match="Invalid message data"):
            join_session_id("abc")


class TestResult:
    def test_success_envelope(self):
        assert Result.success_with({"id": "1"}).to_envelope() == {"success": True, "data": {"id": "1"}}

    def test_failure_envelope(self):
        result = Result.failure("not_found", "Invalid session")
        assert not result.success
        assert result.to_envelope() == {"success": False, "error": "Invalid session"}


class TestCreateSession:
    def test_creates_pending_session(self, service):
        session = _create(service)
        assert session["status"] == "pending"
        assert session["signature_r"] == "111"
        assert session["signature_s"] == "222"

    @pytest.mark.parametrize("field", ["full_public_key", "session_token"])
    def test_missing_field_is_validation_error(self, service, field):
        kwargs = dict(full_public_key="0x04aa", session_token="tok", signature={"r": "1", "s": "2"})
        kwargs[field] = None
        result = service.create_session(**kwargs)
        assert result.error == "validation"

    def test_missing_signature_part(self, service):
        result = service.create_session("0x04aa", "tok", {"r": "1"})
        assert result.error == "validation"
        assert result.message == "Missing signature.s"

    def test_signature_is_not_verified_at_creation(self, service, verifier):
        _create(service)
        assert verifier.calls == []

    def test_store_failure(self, verifier):
        store = MagicMock()
        store.create.side_effect = StoreError("Failed to create session")
        result = HandshakeService(store, verifier).create_session("0x04aa", "tok", {"r": "1", "s": "2"})
        assert result.error == "store"
        assert result.message == "Failed to create session"

    def test_unexpected_error_gets_generic_message(self, verifier):
        store = MagicMock()
        store.create.side_effect = RuntimeError("disk on fire")
        result = HandshakeService(store, verifier).create_session("0x04aa", "tok", {"r": "1", "s": "2"})
        assert result.message == "Failed to create session"


class TestVerifySession:
    def test_idempotent_read(self, service):
        session = _create(service)
        first = service.verify_session(session["id"], "tok-123")
        second = service.verify_session(session["id"], "tok-123")
        assert first == second
        assert first.ok["status"] == "pending"

    def test_wrong_token_looks_like_unknown_session(self, service):
        session = _create(service)
        wrong_token = service.verify_session(session["id"], "tok-999")
        unknown = service.verify_session(str(uuid.uuid4()), "tok-123")
        assert wrong_token == unknown == Result.failure("not_found", "Invalid session")

    def test_missing_params(self, service):
        assert service.verify_session(None, "tok").message == "Missing sessionId or token"
        assert service.verify_session("id", "").message == "Missing sessionId or token"


class TestFetchPending:
    def test_requires_account(self, service):
        assert service.fetch_pending("").message == "Missing accountAddress parameter"

    def test_returns_list(self, service):
        result = service.fetch_pending("0xABC")
        assert result.success and result.ok == []


class TestCompleteSession:
    def test_success_completes_session(self, service, verifier):
        session = _create(service)
        result = _complete(service, session)
        assert result.success
        assert result.ok["status"] == "completed"
        assert result.ok["account_address"] == "0xABC"
        assert verifier.calls[0][0] == "0xABC"

    def test_unknown_session(self, service):
        session = _create(service)
        typed = build_typed_data(session["id"], "tok-123", 1)
        result = service.complete_session(str(uuid.uuid4()), "0xABC", VALID_SIG, typed)
        assert result == Result.failure("not_found", "Invalid session")

    def test_token_mismatch_is_rejected_before_signature_check(self, service, verifier):
        session = _create(service)
        typed = build_typed_data(session["id"], "tok-other", 1)
        result = _complete(service, session, typed_data=typed)
        assert result.error == "validation"
        assert result.message == "Invalid message data"
        assert verifier.calls == []

    def test_session_id_mismatch_rejected_even_with_valid_signature(self, service):
        session = _create(service)
        typed = build_typed_data(str(uuid.uuid4()), "tok-123", 1)
        result = _complete(service, session, typed_data=typed)
        assert result.message == "Invalid message data"
        assert service.verify_session(session["id"], "tok-123").ok["status"] == "pending"

    def test_typed_data_without_message(self, service):
        session = _create(service)
        result = _complete(service, session, typed_data={"types": {}})
        assert result.message == "Invalid message data"

    def test_invalid_signature(self, service):
        session = _create(service)
        result = _complete(service, session, signature=["0xdead", "0xbeef"])
        assert result == Result.failure("invalid_signature", "Invalid signature")
        after = service.verify_session(session["id"], "tok-123").ok
        assert after["status"] == "pending"
        assert after["account_address"] is None

    def test_second_completion_does_not_alter_session(self, service):
        session = _create(service)
        assert _complete(service, session).success

        other = build_typed_data(session["id"], "tok-123", 1800000000)
        again = _complete(service, session, address="0xDEF", typed_data=other)
        assert again == Result.failure("validation", "Session already completed")

        current = service.verify_session(session["id"], "tok-123").ok
        assert current["status"] == "completed"
        assert current["account_address"] == "0xABC"

    def test_chain_error_is_reported(self, service, verifier):
        from starklet.errors import ChainError

        session = _create(service)
        verifier.verify_message = MagicMock(side_effect=ChainError("Starknet node unreachable: timeout"))
        result = _complete(service, session)
        assert result.error == "chain"
        assert service.verify_session(session["id"], "tok-123").ok["status"] == "pending"

    def test_missing_fields(self, service):
        session = _create(service)
        assert service.complete_session(session["id"], None, VALID_SIG, {}).message == "Missing accountAddress"
        assert service.complete_session(session["id"], "0xABC", None, None).error == "validation"


class TestCompletedSessionIsNotDisclosed:
    def test_wrong_token_answer_does_not_depend_on_status(self, service):
        completed = _create(service, token="tok-123")
        assert _complete(service, completed).success
        pending = _create(service, token="tok-456")

        forged_completed = build_typed_data(completed["id"], "tok-forjado", 1)
        forged_pending = build_typed_data(pending["id"], "tok-forjado", 1)
        on_completed = _complete(service, completed, address="0xDEF", typed_data=forged_completed)
        on_pending = _complete(service, pending, address="0xDEF", typed_data=forged_pending)

        assert on_completed == on_pending == Result.failure("validation", "Invalid message data")


class TestCreateSessionAudit:
    def test_valid_token_signature_logs_nothing(self, service, caplog):
        from starklet import keys

        private_key, public_key, full_public_key = keys.generate()
        token = keys.new_session_token()
        with caplog.at_level(logging.WARNING, logger="starklet.handshake"):
            result = service.create_session(full_public_key, token, keys.sign_token(private_key, token), public_key)
        assert result.success
        assert "Auditoria" not in caplog.text

    def test_invalid_token_signature_is_logged_but_accepted(self, service, caplog):
        with caplog.at_level(logging.WARNING, logger="starklet.handshake"):
            session = _create(service)
        assert session["status"] == "pending"
        assert "Auditoria" in caplog.text
        assert session["id"] in caplog.text
