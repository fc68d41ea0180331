"""FastAPI admin entrypoint: trigger pipeline runs and watch the queue."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .database import init_db
from .routers import pipeline

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="Job Digest API",
    description="Queue and monitor the email job-digest pipeline",
    lifespan=lifespan,
)

app.include_router(pipeline.router)


@app.get("/api/health")
def health():
    return {"status": "ok"}
