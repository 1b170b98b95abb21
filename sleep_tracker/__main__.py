import uvicorn

from sleep_tracker.config import settings

if __name__ == "__main__":
    uvicorn.run("sleep_tracker.main:app", host=settings.host, port=settings.port)
