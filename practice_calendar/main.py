from contextlib import asynccontextmanager
import logging
import sys

from fastapi import FastAPI

from . import config
from . import db as _dbmod
from .db import init_db
from .appointments_api import router as appointments_router, tags_router
from .availability_api import router as availability_router

logger = logging.getLogger(__name__)
# Ensure INFO-level messages from the service appear on the console when no
# handlers are configured (safe fallback for development/testing).
_pkg_logger = logging.getLogger('practice_calendar')
if not _pkg_logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter('%(asctime)s %(levelname)s:%(name)s: %(message)s')
    handler.setFormatter(formatter)
    _pkg_logger.addHandler(handler)
_pkg_logger.setLevel(getattr(logging, config.LOG_LEVEL, logging.INFO))


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    logger.info('starting server using DATABASE_URL=%s', _dbmod.DATABASE_URL)
    yield


app = FastAPI(title='practice-calendar', lifespan=lifespan)
app.include_router(appointments_router)
app.include_router(tags_router)
app.include_router(availability_router)


@app.get('/health')
async def health():
    return {'ok': True}
