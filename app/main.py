# app/main.py

from dotenv import load_dotenv
load_dotenv()

import logging
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from app.core.ratelimit import limiter, rate_limit_exceeded_handler

from app.core.config import FRONTEND_ORIGIN
from app.core.logging import setup_logging
from app.db.session import SessionLocal, get_db
from app.db.init_db import init_db

from app.scans.routes import router as scans_router
from app.scans.result_routes import router as results_router
from app.social.routes import router as social_router

from app.scans import queue
from app.scans.cleanup import recover_scan_jobs

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Face Scan API")


# FRONTEND_ORIGIN: "*" or a comma separated list of origins
if FRONTEND_ORIGIN == "*":
    allow_origins = ["*"]
    allow_credentials = False  # can't use credentials with "*"
else:
    allow_origins = [o.strip().rstrip("/") for o in FRONTEND_ORIGIN.split(",") if o.strip()]
    allow_credentials = True

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


@app.on_event("startup")
def on_startup():
    init_db()

    db = SessionLocal()
    try:
        result = recover_scan_jobs(db)
        if result["queued"]:
            try:
                resumed = queue.resume_queued_jobs(db, result["queued"])
                logger.info(f"[startup] resumed {resumed} queued scan jobs")
            except Exception:
                logger.exception("[startup] could not resume queued scan jobs")
    finally:
        db.close()


app.include_router(scans_router)
app.include_router(results_router)
app.include_router(social_router)


@app.get("/health")
def health():
    return {"ok": True}


@app.get("/health/queue")
def health_queue(db: Session = Depends(get_db)):
    data = queue.queue_health(db)
    data["ok"] = data["broker"]["connected"]
    return data


@app.get("/")
def root():
    return {"ok": True, "message": "Face Scan API is running", "docs": "/docs"}
