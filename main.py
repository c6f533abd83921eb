"""
Energy Data Gateway entry point.
Serves the dataset resources over HTTP with uvicorn.
"""

import sys

import uvicorn
from loguru import logger

from energy_api.api import create_app
from energy_api.settings import global_settings


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def main() -> None:
    """Main function"""
    settings = global_settings
    configure_logging(settings.log_level)
    logger.info(f"Starting energy gateway on {settings.host}:{settings.port}")

    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
