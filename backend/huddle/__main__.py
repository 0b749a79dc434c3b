"""Run the chat server with uvicorn: ``python -m huddle``."""
import uvicorn

from huddle.config import get_config


def main() -> None:
    config = get_config()
    uvicorn.run(
        "huddle.main:app",
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level.lower(),
    )


if __name__ == "__main__":
    main()
