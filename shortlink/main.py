from __future__ import annotations

import base64
import logging
import time

import uvicorn
from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, Response, UploadFile
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from shortlink.config import settings
from shortlink.db import engine, get_db
from shortlink.errors import RegistryError, StoreUnavailableError
from shortlink.kv import RedisKVSource, get_legacy_source
from shortlink.migration import migrate
from shortlink.schema_manager import ensure_schema
from shortlink.schemas import (
    ExpiryReport,
    LoginRequest,
    MappingCreate,
    MappingDeleteRequest,
    MappingOut,
    MappingPage,
    MappingUpdateRequest,
    MigrationReport,
    ResolveState,
    SweepResponse,
    UploadedImage,
)
from shortlink.security import clear_auth_cookie, password_matches, require_admin, set_auth_cookie
from shortlink.service import (
    classify_expiring,
    create_mapping,
    delete_mapping,
    list_mappings,
    resolve,
    sweep_expired,
    update_mapping,
)
from shortlink.ui import wechat_page

logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Short Link Registry")


@app.on_event("startup")
def on_startup() -> None:
    """
    Wait for the database to be reachable, then bring the schema up to date.
    This avoids 'connection refused' when containers start in parallel.
    """
    max_attempts = 30
    sleep_seconds = 1

    last_err: Exception | None = None
    for _ in range(max_attempts):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            last_err = None
            break
        except Exception as e:
            last_err = e
            time.sleep(sleep_seconds)

    if last_err is not None:
        raise RuntimeError(f"Database not reachable after {max_attempts} attempts") from last_err

    ensure_schema(engine)


@app.exception_handler(RegistryError)
def registry_error_handler(request: Request, exc: RegistryError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.get("/", include_in_schema=False)
def root() -> RedirectResponse:
    return RedirectResponse(url="/docs", status_code=302)


@app.get("/health")
def health() -> dict:
    return {
        "status": "ok",
        "service": "shortlink-registry",
        "base_url": settings.base_url,
    }


@app.post("/api/login")
def login(payload: LoginRequest, request: Request, response: Response) -> dict:
    if not password_matches(payload.password):
        raise HTTPException(status_code=401, detail="Wrong password")
    set_auth_cookie(response, request)
    return {"success": True}


@app.post("/api/logout")
def logout(response: Response) -> dict:
    clear_auth_cookie(response)
    return {"success": True}


@app.post("/api/upload-image", response_model=UploadedImage, dependencies=[Depends(require_admin)])
def upload_image(image: UploadFile | None = File(default=None)) -> UploadedImage:
    """
    Encodes an uploaded image so it can be stored inline as imageBase64.
    """
    if image is None:
        raise HTTPException(status_code=400, detail="No image uploaded")

    encoded = base64.b64encode(image.file.read()).decode("ascii")
    mime_type = image.content_type or "image/png"
    return UploadedImage(
        base64=encoded,
        data_url=f"data:{mime_type};base64,{encoded}",
        file_name=image.filename,
        mime_type=mime_type,
    )


@app.get("/api/mappings", response_model=MappingPage, dependencies=[Depends(require_admin)])
def get_mappings(
    page: int = 1,
    page_size: int | None = Query(default=None, alias="pageSize"),
    db: Session = Depends(get_db),
) -> MappingPage:
    page_size = min(page_size or settings.default_page_size, settings.max_page_size)
    return list_mappings(db, page, page_size)


@app.post("/api/mappings", response_model=MappingOut, dependencies=[Depends(require_admin)])
def post_mapping(payload: MappingCreate, db: Session = Depends(get_db)) -> MappingOut:
    row = create_mapping(db, payload)
    return MappingOut.model_validate(row)


@app.put("/api/mappings", response_model=MappingOut, dependencies=[Depends(require_admin)])
def put_mapping(payload: MappingUpdateRequest, db: Session = Depends(get_db)) -> MappingOut:
    row = update_mapping(db, payload.original_path, payload)
    return MappingOut.model_validate(row)


@app.delete("/api/mappings", dependencies=[Depends(require_admin)])
def remove_mapping(payload: MappingDeleteRequest, db: Session = Depends(get_db)) -> dict:
    delete_mapping(db, payload.path)
    return {"success": True}


@app.get("/api/expiring", response_model=ExpiryReport, dependencies=[Depends(require_admin)])
def get_expiring(db: Session = Depends(get_db)) -> ExpiryReport:
    return classify_expiring(db)


@app.post("/api/cleanup", response_model=SweepResponse, dependencies=[Depends(require_admin)])
def cleanup(db: Session = Depends(get_db)) -> SweepResponse:
    return SweepResponse(deleted=sweep_expired(db, settings.cleanup_batch_size))


@app.post("/api/migrate", response_model=MigrationReport, dependencies=[Depends(require_admin)])
def migrate_legacy(
    db: Session = Depends(get_db),
    source: RedisKVSource = Depends(get_legacy_source),
) -> MigrationReport:
    return migrate(db, source)


@app.get("/{path:path}")
def redirect(path: str, db: Session = Depends(get_db)) -> Response:
    """
    Redirect hot path. A store outage degrades to 404 for the visitor.
    WeChat mappings render their QR page instead of redirecting.
    """
    try:
        resolution = resolve(db, path)
    except StoreUnavailableError:
        logger.exception("resolution failed for %s", path)
        raise HTTPException(status_code=404, detail="Short link not found")

    if resolution.state is ResolveState.EXPIRED:
        raise HTTPException(status_code=410, detail="Short link has expired")
    if resolution.state is ResolveState.NOT_FOUND:
        raise HTTPException(status_code=404, detail="Short link not found")

    if resolution.mapping.is_wechat:
        return wechat_page(resolution.mapping)
    return RedirectResponse(url=resolution.target, status_code=302)


def run() -> None:
    uvicorn.run("shortlink.main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())
