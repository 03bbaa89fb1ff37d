import sys

import uvicorn

from core.config import settings
from core.logger import setup_logging, logger


def main():
    setup_logging()

    host = "0.0.0.0"
    port = 8000
    if len(sys.argv) > 1:
        port = int(sys.argv[1])

    logger.info("Starting API...", env=settings.ENV, port=port)
    uvicorn.run("api.main:app", host=host, port=port, log_level=settings.LOG_LEVEL.lower())


if __name__ == "__main__":
    try:
        main()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Application stopped.")
