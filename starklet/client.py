"""
starklet/client.py
==================
Command-line side of the handshake.

    create_session()    generate keys + token, POST /api/session/new
    await_completion()  GET /api/session/verify every ``poll_interval`` seconds
                        until the wallet step completes the session
    run()               the whole flow, driven by ClientOptions
"""

import json
import logging
import os
import time
import webbrowser
from dataclasses import dataclass
from typing import Callable

import requests
from dotenv import set_key

from starklet import keys
from starklet.address import starklet_address
from starklet.config import config
from starklet.database import STATUS_COMPLETED
from starklet.errors import PollingTimeoutError, SessionRejectedError
from starklet.handshake import Result

logger = logging.getLogger(__name__)


@dataclass
class ClientOptions:
    persist_to_file: bool = True
    persist_to_env: bool = False
    compute_derived_address: bool = True
    open_browser: bool = True
    credentials_file: str = "starklet.json"
    env_file: str = ".env"

    @classmethod
    def from_config(cls, **overrides) -> "ClientOptions":
        values = {
            "credentials_file": config.CREDENTIALS_FILE,
            "env_file": config.CREDENTIALS_ENV_FILE,
        }
        values.update(overrides)
        return cls(**values)


class SessionApi:
    """HTTP wrapper around the session endpoints; every call returns a Result."""

    def __init__(self, base_url: str, http: requests.Session | None = None, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.http = http or requests.Session()
        self.timeout = timeout

    @staticmethod
    def _to_result(resp: requests.Response) -> Result:
        try:
            body = resp.json()
        except ValueError:
            return Result.failure("http", f"Unexpected response (HTTP {resp.status_code})")

        if not isinstance(body, dict):
            return Result.failure("http", f"Unexpected response (HTTP {resp.status_code})")
        if body.get("success"):
            return Result.success_with(body.get("data"))
        return Result.failure("rejected", body.get("error") or f"HTTP {resp.status_code}")

    def create(self, full_public_key: str, session_token: str, signature: dict, public_key: str) -> Result:
        resp = self.http.post(
            f"{self.base_url}/api/session/new",
            json={
                "fullPublicKey": full_public_key,
                "sessionToken": session_token,
                "signature": signature,
                "publicKey": public_key,
            },
            timeout=self.timeout,
        )
        return self._to_result(resp)

    def verify(self, session_id: str, session_token: str) -> Result:
        resp = self.http.get(
            f"{self.base_url}/api/session/verify",
            params={"sessionId": session_id, "token": session_token},
            timeout=self.timeout,
        )
        return self._to_result(resp)


class PollingClient:
    def __init__(
        self,
        api: SessionApi,
        options: ClientOptions | None = None,
        sleep: Callable[[float], None] = time.sleep,
        app_url: str | None = None,
        out: Callable[[str], None] = print,
    ):
        self.api = api
        self.options = options or ClientOptions()
        self.sleep = sleep
        self.app_url = (app_url or config.APP_URL).rstrip("/")
        self.out = out
        self.credentials: dict = {}

    def create_session(self) -> tuple[str, str, str, str]:
        """Return (session_id, session_token, private_key, public_key)."""
        private_key, public_key, full_public_key = keys.generate()
        session_token = keys.new_session_token()
        signature = keys.sign_token(private_key, session_token)

        self.credentials = {
            "private_key": private_key,
            "public_key": public_key,
            "full_public_key": full_public_key,
            "session_token": session_token,
            "signature": signature,
        }

        logger.info("Enviando chave pública, token e assinatura para o servidor …")
        result = self.api.create(full_public_key, session_token, signature, public_key)
        if not result.success:
            raise SessionRejectedError(f"Server rejected the session: {result.message}")

        session_id = result.ok["id"]
        self.credentials["session_id"] = session_id
        logger.info("Sessão %s criada.", session_id)
        return session_id, session_token, private_key, public_key

    def await_completion(
        self,
        session_id: str,
        session_token: str,
        poll_interval: float = 2,
        max_attempts: int = 60,
    ) -> str:
        """Block until the session is completed and return its account address."""
        for attempt in range(1, max_attempts + 1):
            try:
                result = self.api.verify(session_id, session_token)
            except requests.RequestException as exc:
                logger.warning("Tentativa %d/%d: servidor indisponível — %s", attempt, max_attempts, exc)
            else:
                if result.success:
                    session = result.ok or {}
                    if session.get("status") == STATUS_COMPLETED and session.get("account_address"):
                        logger.info("Sessão %s completada após %d tentativa(s).", session_id, attempt)
                        return session["account_address"]
                    logger.debug("Tentativa %d/%d: sessão ainda pendente.", attempt, max_attempts)
                else:
                    logger.warning("Tentativa %d/%d: %s", attempt, max_attempts, result.message)

            self.sleep(poll_interval)

        raise PollingTimeoutError(
            f"Session {session_id} was not completed after {max_attempts} attempts "
            f"({max_attempts * poll_interval:g}s)"
        )

    def session_url(self, session_id: str, session_token: str) -> str:
        return f"{self.app_url}/session/{session_id}?token={session_token}"

    def persist_credentials(self, credentials: dict) -> list[str]:
        written = []

        if self.options.persist_to_file:
            directory = os.path.dirname(self.options.credentials_file)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(self.options.credentials_file, "w") as f:
                json.dump(credentials, f, indent=2)
            written.append(self.options.credentials_file)

        if self.options.persist_to_env:
            if not os.path.exists(self.options.env_file):
                open(self.options.env_file, "a").close()
            env_values = {
                "STARKLET_PRIVATE_KEY": credentials.get("private_key"),
                "STARKLET_PUBLIC_KEY": credentials.get("public_key"),
                "STARKLET_FULL_PUBLIC_KEY": credentials.get("full_public_key"),
                "STARKLET_SESSION_ID": credentials.get("session_id"),
                "STARKLET_SESSION_TOKEN": credentials.get("session_token"),
                "STARKLET_ACCOUNT_ADDRESS": credentials.get("account_address"),
                "STARKLET_ADDRESS": credentials.get("starklet_address"),
            }
            for key, value in env_values.items():
                if value:
                    set_key(self.options.env_file, key, value)
            written.append(self.options.env_file)

        for path in written:
            logger.info("Credenciais salvas em '%s'.", path)
        return written

    def _print_credentials(self) -> None:
        c = self.credentials
        self.out("=" * 60)
        self.out(f"PRIVATE_KEY=      {c['private_key']}")
        self.out(f"PUBLIC_KEY=       {c['public_key']}")
        self.out(f"FULL_PUBLIC_KEY=  {c['full_public_key']}")
        self.out(f"SESSION_TOKEN=    {c['session_token']}")
        self.out(f"SIGNATURE=        r={c['signature']['r']} s={c['signature']['s']}")
        self.out("=" * 60)

    def _finish(self, session_id: str, session_token: str, poll_interval: float, max_attempts: int) -> str:
        account_address = self.await_completion(session_id, session_token, poll_interval, max_attempts)
        self.credentials["account_address"] = account_address
        self.out(f"ACCOUNT_ADDRESS=  {account_address}")

        full_public_key = self.credentials.get("full_public_key")
        if self.options.compute_derived_address and not full_public_key:
            logger.warning("Sem FULL_PUBLIC_KEY nas credenciais — endereço do Starklet não calculado.")
        elif self.options.compute_derived_address:
            address = starklet_address(full_public_key)
            self.credentials["starklet_address"] = address
            self.out(f"STARKLET_ADDRESS= {address}")

        self.persist_credentials(self.credentials)
        return account_address

    def run(self, poll_interval: float | None = None, max_attempts: int | None = None) -> str:
        poll_interval = config.POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        max_attempts = config.POLL_MAX_ATTEMPTS if max_attempts is None else max_attempts

        session_id, session_token, _, _ = self.create_session()
        self._print_credentials()
        self.persist_credentials(self.credentials)

        url = self.session_url(session_id, session_token)
        self.out(f"Abra no navegador para autorizar com sua carteira:\n  {url}")
        if self.options.open_browser:
            webbrowser.open(url)

        return self._finish(session_id, session_token, poll_interval, max_attempts)

    def resume(self, poll_interval: float | None = None, max_attempts: int | None = None) -> str:
        """Re-poll the session saved by a previous run."""
        poll_interval = config.POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        max_attempts = config.POLL_MAX_ATTEMPTS if max_attempts is None else max_attempts

        self.credentials = config.load_credentials(self.options.credentials_file)
        session_id = self.credentials["session_id"]
        session_token = self.credentials["session_token"]

        self.out(f"Retomando sessão {session_id}:\n  {self.session_url(session_id, session_token)}")
        return self._finish(session_id, session_token, poll_interval, max_attempts)
