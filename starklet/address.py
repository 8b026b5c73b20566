"""
starklet/address.py
===================
Deterministic Starklet address derivation (``starknet-py`` ``compute_address``).

The (class_hash, deployer_address) pair must be the one the factory uses when
it deploys, otherwise the derived address will not match the contract.
"""

import logging

from starknet_py.hash.address import compute_address

from starklet.config import config
from starklet.keys import public_key_calldata

logger = logging.getLogger(__name__)


def to_int(value) -> int:
    """Accept ints, 0x-prefixed hex strings and decimal strings."""
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if text.lower().startswith("0x"):
        return int(text, 16)
    return int(text)


def to_address(value: int) -> str:
    return "0x" + format(value, "064x")


def derive(salt, class_hash, constructor_args, deployer_address) -> str:
    address = compute_address(
        salt=to_int(salt),
        class_hash=to_int(class_hash),
        constructor_calldata=[to_int(arg) for arg in constructor_args],
        deployer_address=to_int(deployer_address),
    )
    return to_address(address)


def starklet_address(full_public_key: str, salt=None, class_hash=None, deployer_address=None) -> str:
    """Precompute the address the factory will deploy for this public key."""
    salt = config.STARKLET_SALT if salt is None else salt
    class_hash = class_hash or config.require("STARKLET_CLASS_HASH")
    deployer_address = deployer_address or config.require("STARKLET_FACTORY_ADDRESS")

    address = derive(salt, class_hash, public_key_calldata(full_public_key), deployer_address)
    logger.info("Endereço pré-calculado do Starklet: %s", address)
    return address
