from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
import os

from core.config import logger, APP_NAME, FRONTEND_URL, IS_PRODUCTION, ENABLE_DEV_WEBHOOK_SIMULATION, STATIC_DIR  # type: ignore

# Routers
from routers import payments_webhook, activation  # type: ignore

app = FastAPI(title=f"{APP_NAME} API")

# ---- CORS setup ----
_default_origins = ",".join([
    FRONTEND_URL,
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
])
_origins_env = os.getenv("ALLOWED_ORIGINS") or os.getenv("CORS_ORIGINS") or _default_origins
ALLOWED_ORIGINS = [o.strip() for o in _origins_env.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Security headers ---
@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    try:
        response.headers.setdefault("Strict-Transport-Security", "max-age=63072000; includeSubDomains; preload")
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        response.headers.setdefault("X-Frame-Options", "DENY")
    except Exception as ex:
        logger.debug(f"security headers skipped: {ex}")
    return response


# ---- Static mount (local fallback for invoices) ----
os.makedirs(STATIC_DIR, exist_ok=True)
app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

app.include_router(payments_webhook.router)
app.include_router(activation.router)

if ENABLE_DEV_WEBHOOK_SIMULATION and IS_PRODUCTION:
    logger.error("ENABLE_DEV_WEBHOOK_SIMULATION is set in production; the simulation route stays disabled")


@app.on_event("startup")
async def _init_schema():
    try:
        from core.database import init_db
        init_db()
    except Exception as _ex:
        logger.warning(f"init_db failed: {_ex}")


@app.get("/")
async def root():
    return {"ok": True}
