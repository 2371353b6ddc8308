"""Command-line entrypoint that serves the API with uvicorn."""

import uvicorn

from voiceshop.config import settings


def main() -> None:
    uvicorn.run(
        "voiceshop.main:app",
        host=settings.app_host,
        port=settings.app_port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
