"""
starklet/chain.py
=================
Minimal Starknet JSON-RPC client used by the server:

- verify_message: asks the account contract whether a typed-data signature is
  valid (``is_valid_signature``), the same check a wallet-aware frontend does
  with ``account.verifyMessage``.
- StarkletFactory: read-only views of the factory that deploys Starklets.
"""

import itertools
import logging
from typing import Any

import requests
from starknet_py.hash.selector import get_selector_from_name
from starknet_py.utils.typed_data import TypedData

from starklet.address import to_address, to_int
from starklet.errors import ChainError

logger = logging.getLogger(__name__)

# Cairo 1 accounts answer 'VALID' as a short string, Cairo 0 accounts answer 1.
VALID_SHORT_STRING = 0x56414C4944


class ContractCallError(ChainError):
    """The node answered, but the call itself failed (revert, unknown contract...)."""


def parse_signature(signature: Any) -> list[int]:
    """Wallets send either a list of felts or an {r, s} object."""
    if isinstance(signature, dict):
        if "r" not in signature or "s" not in signature:
            raise ValueError("Signature object must have 'r' and 's'")
        return [to_int(signature["r"]), to_int(signature["s"])]
    if isinstance(signature, (list, tuple)) and signature:
        return [to_int(part) for part in signature]
    raise ValueError("Signature must be a non-empty list or an {r, s} object")


class StarknetClient:
    def __init__(self, node_url: str, http: requests.Session | None = None, timeout: float = 10.0):
        self.node_url = node_url
        self.http = http or requests.Session()
        self.timeout = timeout
        self._ids = itertools.count(1)

    def _rpc(self, method: str, params: dict) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            resp = self.http.post(self.node_url, json=payload, timeout=self.timeout)
            resp.raise_for_status()
            body = resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise ChainError(f"Starknet node unreachable: {exc}") from exc

        if "error" in body:
            error = body["error"]
            message = error.get("message", error) if isinstance(error, dict) else error
            raise ContractCallError(f"RPC {method} failed: {message}")
        return body.get("result")

    def call(self, contract_address, function_name: str, calldata: list[int]) -> list[int]:
        request = {
            "contract_address": hex(to_int(contract_address)),
            "entry_point_selector": hex(get_selector_from_name(function_name)),
            "calldata": [hex(value) for value in calldata],
        }
        result = self._rpc("starknet_call", {"request": request, "block_id": "latest"})
        return [to_int(value) for value in result or []]

    def verify_message(self, account_address: str, typed_data: dict, signature: Any) -> bool:
        try:
            account = to_int(account_address)
            message_hash = TypedData.from_dict(typed_data).message_hash(account)
            felts = parse_signature(signature)
        except Exception as exc:
            logger.warning("Typed data ou assinatura malformados para %s: %s", account_address, exc)
            return False

        try:
            result = self.call(account, "is_valid_signature", [message_hash, len(felts), *felts])
        except ContractCallError as exc:
            # Accounts that reject the signature by reverting surface as RPC errors.
            logger.warning("is_valid_signature rejeitou a assinatura de %s: %s", account_address, exc)
            return False

        is_valid = bool(result) and result[0] in (VALID_SHORT_STRING, 1)
        logger.debug("is_valid_signature(%s) -> %s", account_address, result)
        return is_valid


class StarkletFactory:
    def __init__(self, client: StarknetClient, factory_address: str):
        self.client = client
        self.factory_address = factory_address

    def user_starklets(self, owner: str) -> list[dict]:
        owner_int = to_int(owner)
        count = self.client.call(self.factory_address, "get_user_starklets_count", [owner_int])
        total = count[0] if count else 0

        starklets = []
        for index in range(total):
            result = self.client.call(self.factory_address, "get_user_starklet_at", [owner_int, index])
            starklets.append({
                "address": to_address(result[0]),
                "name": f"Starklet #{index + 1}",
            })

        logger.info("Conta %s possui %d Starklet(s).", owner, total)
        return starklets
