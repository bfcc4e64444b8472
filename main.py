import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from config import settings
from db import create_db_and_tables
from errors import LockerShareError
from routers import articles, auth, hardware, requests, users
from tasks import side_effects

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
    stream=sys.stdout,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()
    side_effects.start()
    logger.info("LockerShare started")
    try:
        yield
    finally:
        side_effects.stop()


app = FastAPI(title="LockerShare", lifespan=lifespan)


@app.exception_handler(LockerShareError)
async def lockershare_error_handler(request: Request, exc: LockerShareError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "code": exc.code},
    )


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(auth.router)
app.include_router(users.router, prefix="/users")
app.include_router(articles.router, prefix="/articles")
app.include_router(requests.router, prefix="/requests")
app.include_router(hardware.router, prefix="/hardware")
