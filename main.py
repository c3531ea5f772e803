from chatapi.logging_config import setup_logging
from chatapi.routes import create_app
from chatapi.settings import settings

setup_logging()

app = create_app()


def run() -> None:
    import uvicorn

    # log_config=None keeps the handlers installed by setup_logging().
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment.lower() == "development",
        log_config=None,
    )


if __name__ == "__main__":
    run()
