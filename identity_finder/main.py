import logging

import uvicorn

from .app import create_app
from .config import configure_logging, load_settings

logger = logging.getLogger(__name__)


def main():
    settings = load_settings()
    configure_logging(settings)

    logger.info("Settings loaded")

    app_instance = create_app(settings.cors_origin_list)
    logger.info("Listening on %s:%s", settings.host, settings.port)
    # log_config=None keeps our root handler; uvicorn loggers propagate to it
    uvicorn.run(app_instance, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
