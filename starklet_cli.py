"""
starklet_cli.py
===============
Links a freshly generated key pair to your Starknet wallet.

Usage
-----
    starklet-cli                     # new session, saves starklet.json
    starklet-cli --save-env          # also appends the keys to .env
    starklet-cli --no-address        # skip the Starklet address precomputation
    starklet-cli resume              # keep polling the session in starklet.json
"""

import argparse
import logging
import sys

from starklet.client import ClientOptions, PollingClient, SessionApi
from starklet.config import config
from starklet.errors import StarkletError

logger = logging.getLogger("starklet_cli")


def _parse_args(argv):
    parser = argparse.ArgumentParser(prog="starklet-cli", description=__doc__.split("Usage")[0].strip())
    parser.add_argument("command", nargs="?", choices=["new", "resume"], default="new")
    parser.add_argument("--save-json", dest="save_json", action=argparse.BooleanOptionalAction, default=True,
                        help="write the credentials to CREDENTIALS_FILE (default: on)")
    parser.add_argument("--save-env", action="store_true", help="append the credentials to CREDENTIALS_ENV_FILE")
    parser.add_argument("--no-address", action="store_true", help="do not precompute the Starklet address")
    parser.add_argument("--no-browser", action="store_true", help="only print the authorization URL")
    parser.add_argument("--credentials-file", default=config.CREDENTIALS_FILE)
    return parser.parse_args(argv)


def main(argv=None) -> int:
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s [%(levelname)-8s] %(name)s — %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%SZ",
    )
    args = _parse_args(sys.argv[1:] if argv is None else argv)

    options = ClientOptions.from_config(
        persist_to_file=args.save_json,
        persist_to_env=args.save_env,
        compute_derived_address=not args.no_address,
        open_browser=not args.no_browser,
        credentials_file=args.credentials_file,
    )
    client = PollingClient(SessionApi(config.API_URL), options)

    try:
        if args.command == "resume":
            client.resume()
        else:
            client.run()
    except (StarkletError, KeyError, FileNotFoundError, ValueError) as exc:
        message = exc.message if isinstance(exc, StarkletError) else str(exc)
        print(f"\n❌ {message}", file=sys.stderr)
        return 1
    except Exception as exc:
        logger.error("Falha inesperada: %s", exc, exc_info=True)
        print(f"\n❌ {exc}", file=sys.stderr)
        return 1

    print("\n✅ Sessão vinculada com sucesso.")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
