from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from .config import settings
from .errors import DecryptionFailed, InvalidInput
from .logging import setup_logging
from .runtime import build_core
from .api.routes import router as api_router

setup_logging()

@asynccontextmanager
async def lifespan(app: FastAPI):
    core = build_core()
    app.state.core = core
    if settings.default_user_id:
        core.scheduler.start(settings.default_user_id)
    yield
    await core.aclose()

app = FastAPI(title="cryptohub-core", lifespan=lifespan)
app.include_router(api_router)

@app.exception_handler(InvalidInput)
async def invalid_input_handler(request: Request, exc: InvalidInput):
    return JSONResponse(status_code=400, content={"detail": str(exc)})

@app.exception_handler(DecryptionFailed)
async def decryption_failed_handler(request: Request, exc: DecryptionFailed):
    return JSONResponse(status_code=422, content={"detail": str(exc)})
