# ruo/main.py
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.staticfiles import StaticFiles

from ruo import config
from ruo.db import init_models, make_engine, make_sessionmaker
from ruo.errors import RuoError
from ruo.scheduler import start_scheduler, stop_scheduler
from ruo.services.container import Services

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Lifespan: base, collaborateurs, scheduler de rafraîchissement
# -----------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    # --- Startup ---
    engine = make_engine()
    await init_models(engine)
    app.state.engine = engine
    app.state.sessionmaker = make_sessionmaker(engine)
    app.state.services = Services.build()

    scheduler = None
    if config.SCHEDULER_ENABLED:
        scheduler = start_scheduler(app.state.sessionmaker, app.state.services.authorities)
    else:
        logger.info("[scheduler] disabled via SCHEDULER_ENABLED=0")
    app.state.scheduler = scheduler

    yield

    # --- Shutdown ---
    stop_scheduler(scheduler)
    await app.state.services.aclose()
    await engine.dispose()


# -----------------------------------------------------------------------------
# App
# -----------------------------------------------------------------------------
app = FastAPI(title="RUO API", lifespan=lifespan)

# -----------------------------------------------------------------------------
# CORS (avant d'inclure les routers)
# -----------------------------------------------------------------------------
allowed_origins = {"http://localhost:3000"}

# Surcharge via ALLOWED_ORIGINS="https://foo.de,https://bar.de"
extra = (os.getenv("ALLOWED_ORIGINS") or "").strip()
if extra:
    for o in extra.split(","):
        o = o.strip()
        if o:
            allowed_origins.add(o)

app.add_middleware(
    CORSMiddleware,
    allow_origins=sorted(allowed_origins),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=86400,
)

# -----------------------------------------------------------------------------
# Fichiers statiques (preuves uploadées)
# -----------------------------------------------------------------------------
app.mount(config.STATIC_URL_PATH, StaticFiles(directory=config.STATIC_DIR), name="uploads")


@app.exception_handler(RuoError)
async def ruo_error_handler(request: Request, exc: RuoError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/health")
async def health():
    return {"ok": True}


# -----------------------------------------------------------------------------
# Routes
# -----------------------------------------------------------------------------
from ruo.routes.reports import router as reports_router          # noqa: E402
from ruo.routes.evidence import router as evidence_router        # noqa: E402
from ruo.routes.authorities import router as authorities_router  # noqa: E402
from ruo.routes.geocode import router as geocode_router          # noqa: E402
from ruo.routes.public import router as public_router            # noqa: E402
from ruo.routes.admin import router as admin_router              # noqa: E402

app.include_router(reports_router)
app.include_router(evidence_router)
app.include_router(authorities_router)
app.include_router(geocode_router)
app.include_router(public_router)
app.include_router(admin_router)
