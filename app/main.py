from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.db import init_db
from app.core.logging import configure_logging
from app.routers.auth import router as auth_router
from app.routers.meals import router as meals_router
from app.routers.orders import router as orders_router
from app.routers.tickets import router as tickets_router
from app.routers.users import router as users_router
from app.services.errors import Conflict, SettlementError

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.DB_CREATE_ALL:
        await init_db()
    yield


app = FastAPI(title="Venue POS", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SettlementError)
async def settlement_error_handler(request: Request, exc: SettlementError) -> JSONResponse:
    logger.info("%s %s rejected: %s", request.method, request.url.path, exc.message)
    body = {"detail": exc.message}
    if isinstance(exc, Conflict) and exc.unit_ids:
        body["ticket_ids"] = exc.unit_ids
    return JSONResponse(status_code=exc.status_code, content=body)


app.include_router(auth_router)
app.include_router(users_router)
app.include_router(tickets_router)
app.include_router(meals_router)
app.include_router(orders_router)


@app.get("/health")
async def health():
    return {"status": "ok"}
