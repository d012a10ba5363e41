"""Entry point for running the application with uvicorn."""

import uvicorn

from tally.config import settings


def main() -> None:
    """Run the application."""
    uvicorn.run(
        "tally.api.app:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_config=None,
    )


if __name__ == "__main__":
    main()
