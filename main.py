from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from crystal_ball.modules.admin_api import router as admin_router
from crystal_ball.modules.auth_api import router as auth_router
from crystal_ball.modules.campaigns_api import router as campaigns_router
from crystal_ball.modules.characters_api import router as characters_router
from crystal_ball.modules.db import create_all_tables
from crystal_ball.modules.documents_api import router as documents_router
from crystal_ball.modules.logging_helpers import logger
from crystal_ball.modules.object_storage import get_object_store
from crystal_ball.modules.profile_api import router as profile_router
from crystal_ball.modules.setup_api import router as setup_router
from crystal_ball.modules.spells_api import router as spells_router
from settings import get_settings


# ---------- Lifespan (startup/shutdown) ----------
@asynccontextmanager
async def lifespan(app: FastAPI):
    cfg = get_settings()
    if cfg.auto_create_tables:
        await create_all_tables()
    try:
        await run_in_threadpool(get_object_store().ensure_bucket)
    except Exception:
        logger.warning("Object store bucket check failed; uploads may not work", exc_info=True)
    yield


app = FastAPI(title="Merlin's Crystal Ball", lifespan=lifespan)

_origins = get_settings().cors_origin_list or ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials="*" not in _origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------- Errors ----------
@app.exception_handler(StarletteHTTPException)
async def http_error(_request: Request, exc: StarletteHTTPException):
    return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error(_request: Request, exc: RequestValidationError):
    return JSONResponse(
        {"error": "Invalid request data", "details": jsonable_encoder(exc.errors())},
        status_code=400,
    )


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


# ---------- Routers ----------
app.include_router(auth_router)
app.include_router(setup_router)
app.include_router(admin_router)
app.include_router(profile_router)
app.include_router(campaigns_router)
app.include_router(characters_router)
app.include_router(documents_router)
app.include_router(spells_router)


@app.get("/health", include_in_schema=False)
async def health():
    return {"status": "ok"}


if __name__ == "__main__":
    uvicorn.run(app, host="127.0.0.1", port=8000)
