"""
Entry point: ``python -m mongo_collections`` or ``mongo-collections``.
"""
import uvicorn

from mongo_collections.config import get_settings
from mongo_collections.main import app, setup_logging


def main():
    settings = get_settings()
    setup_logging(settings.log_level)
    uvicorn.run(
        app,
        host=settings.http_host,
        port=settings.http_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
