import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from signatura.config import settings
from signatura.errors import SignaturaError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.storage_backend == "sql":
        from signatura.database import init_models

        await init_models()
    yield


app = FastAPI(title=settings.app_name, lifespan=lifespan, redirect_slashes=False)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SignaturaError)
async def signatura_error_handler(request: Request, exc: SignaturaError):
    logger.info("%s %s -> %d: %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


from signatura.credentials.router import router as credentials_router  # noqa: E402
from signatura.sharing.router import public_router as shared_router  # noqa: E402
from signatura.sharing.router import router as sharing_router  # noqa: E402
from signatura.wallet.router import router as wallet_router  # noqa: E402

app.include_router(credentials_router)
app.include_router(wallet_router)
app.include_router(sharing_router)
app.include_router(shared_router)


@app.get("/health")
async def health():
    return {"status": "ok"}
