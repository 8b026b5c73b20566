"""
starklet/keys.py
================
Generates the secp256k1 key pair and the session token the CLI hands to the
server, using the starkbank-ecdsa library (``ellipticcurve``).

Key material is exchanged as hex strings:

    private key      0x<64 hex>
    public key       0x02|0x03 + x          (compressed)
    full public key  0x04 + x + y           (uncompressed)
"""

from ellipticcurve.curve import secp256k1
from ellipticcurve.ecdsa import Ecdsa
from ellipticcurve.privateKey import PrivateKey
from ellipticcurve.publicKey import PublicKey
from ellipticcurve.signature import Signature
from ellipticcurve.utils.integer import RandomInteger

TOKEN_BITS = 251
_U128 = 2 ** 128


def _hex(value: int) -> str:
    return f"{value:064x}"


def _strip_0x(value: str) -> str:
    return value[2:] if value.lower().startswith("0x") else value


def generate() -> tuple[str, str, str]:
    """Return (private_key, public_key, full_public_key)."""
    private_key = PrivateKey(curve=secp256k1)
    point = private_key.publicKey().point

    prefix = "02" if point.y % 2 == 0 else "03"
    return (
        "0x" + _hex(private_key.secret),
        "0x" + prefix + _hex(point.x),
        "0x04" + _hex(point.x) + _hex(point.y),
    )


def new_session_token() -> str:
    """Random 251-bit value drawn from the same source as private keys."""
    return hex(RandomInteger.between(1, 2 ** TOKEN_BITS - 1))


def sign_token(private_key: str, token: str) -> dict:
    secret = int(_strip_0x(private_key), 16)
    signature = Ecdsa.sign(token, PrivateKey(curve=secp256k1, secret=secret))
    return {"r": str(signature.r), "s": str(signature.s)}


def parse_full_public_key(full_public_key: str) -> PublicKey:
    raw = _strip_0x(full_public_key)
    if len(raw) != 130 or not raw.startswith("04"):
        raise ValueError(f"Not an uncompressed secp256k1 public key: {full_public_key!r}")
    return PublicKey.fromString(raw[2:], curve=secp256k1)


def verify_token_signature(token: str, signature: dict, full_public_key: str) -> bool:
    """Check the signature stored at session creation against its token."""
    try:
        public_key = parse_full_public_key(full_public_key)
        sig = Signature(int(signature["r"]), int(signature["s"]))
    except Exception:
        return False
    return Ecdsa.verify(token, sig, public_key)


def public_key_calldata(full_public_key: str) -> list[int]:
    """
    Serialise the public key as the Starklet constructor expects it: two Cairo
    u256 values (x, y), each split into (low, high) 128-bit felts.
    """
    point = parse_full_public_key(full_public_key).point
    return [
        point.x % _U128, point.x // _U128,
        point.y % _U128, point.y // _U128,
    ]
