import uvicorn

from settings import load_settings


def run_server():
    settings = load_settings()
    # Cloud Run and similar hosts expose the port through $PORT; listen on all interfaces
    uvicorn.run(
        "backend:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    run_server()
