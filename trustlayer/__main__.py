import uvicorn

from .config import Settings


def main() -> None:
    settings = Settings.from_env()
    uvicorn.run("trustlayer.main:create_app", factory=True, host="0.0.0.0", port=settings.app_port,
                log_config=None)


if __name__ == "__main__":
    main()
