import uvicorn

from .settings import settings

if __name__ == "__main__":
    uvicorn.run("fleetdispatch.main:app", host="0.0.0.0", port=settings.port)
