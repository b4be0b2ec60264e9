"""Run the Eventroom server: ``python -m eventroom``."""
import uvicorn

from eventroom.config import get_config


def main() -> None:
    server = get_config().server
    uvicorn.run("eventroom.main:app", host=server.host, port=server.port)


if __name__ == "__main__":
    main()
