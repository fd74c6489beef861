from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from attributionpivot.config import configure_logging, default_ads_db_path, default_crm_db_path  # noqa: E402

from backend.api.pivot import router as pivot_router  # noqa: E402

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    for label, db in (("ads", default_ads_db_path()), ("crm", default_crm_db_path())):
        if not Path(db).exists():
            logger.warning("%s DB not found at %s - run scripts/generate_dummy_data.py first", label, db)
    yield


app = FastAPI(title="AttributionPivot", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(pivot_router, prefix="/api", tags=["pivot"])


@app.exception_handler(RequestValidationError)
async def request_validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{location}: {first.get('msg', 'invalid request')}" if location else str(first.get("msg", "invalid request"))
    return JSONResponse(status_code=400, content={"success": False, "error": message, "details": jsonable(errors)})


def jsonable(errors: list) -> list[dict[str, object]]:
    return [{"loc": [str(p) for p in e.get("loc", ())], "msg": str(e.get("msg", ""))} for e in errors]


@app.get("/api/health")
async def health():
    return {"status": "ok", "ads_db": default_ads_db_path(), "crm_db": default_crm_db_path()}
