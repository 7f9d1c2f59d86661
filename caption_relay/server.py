import uvicorn

from caption_relay.core.config import get_settings


def run() -> None:
    settings = get_settings()
    uvicorn.run(
        "caption_relay.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
