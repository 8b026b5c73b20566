import logging

from starklet.config import config
from starklet.api import create_app
from starklet.chain import StarkletFactory, StarknetClient
from starklet.database import SessionStore, init_db, make_engine
from starklet.handshake import HandshakeService

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s [%(levelname)-8s] %(name)s — %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)


def build_app():
    engine = make_engine(config.DATABASE_URL)
    init_db(engine)

    chain = StarknetClient(config.STARKNET_NODE_URL)
    factory = None
    if config.STARKLET_FACTORY_ADDRESS:
        factory = StarkletFactory(chain, config.STARKLET_FACTORY_ADDRESS)
    else:
        logging.getLogger(__name__).warning("STARKLET_FACTORY_ADDRESS ausente — /api/starklets desativado.")

    service = HandshakeService(store=SessionStore(engine), verifier=chain)
    return create_app(service, factory=factory)


def main() -> None:  # pragma: no cover
    app = build_app()
    app.run(host="0.0.0.0", port=config.APP_PORT, debug=False)


if __name__ == "__main__":  # pragma: no cover
    main()
