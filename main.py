import logging

import uvicorn

from async_whatsapp_queue.config import load_config
from async_whatsapp_queue.server import build_application


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='[%(asctime)s] [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        force=True  # Force reconfiguration to avoid duplicate handlers
    )


if __name__ == "__main__":
    config = load_config()
    configure_logging(config.log_level)
    # The queue and gateway are started by the app lifespan inside uvicorn's event loop
    app, _queue = build_application(config)
    uvicorn.run(app, host=config.server.host, port=int(config.server.port))
