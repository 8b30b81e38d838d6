from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

import config
from db import ResultStore, ResultStoreError
from runner import ScanCoordinator

logger = logging.getLogger("tls_checker")


# -----------------------------
# Pydantic models
# -----------------------------

class UrlScanRequest(BaseModel):
    urls: List[str] = []


class BatchRequest(BaseModel):
    offset: int = 0
    batch_size: int = 10


class StartScanRequest(BaseModel):
    directories: Optional[List[str]] = None


class UrlScanResponse(BaseModel):
    processed: int
    passing: int
    failing: int
    failing_urls: List[str]


class BatchResponse(UrlScanResponse):
    remaining: int


class StartScanResponse(BaseModel):
    pending: int


class DiscoveryResponse(BaseModel):
    urls_to_scan: List[str]


class ResultsResponse(BaseModel):
    passing: int
    failing: int
    passing_urls: List[str]
    failing_urls: List[str]


class ResetResponse(BaseModel):
    success: bool
    message: str


# -----------------------------
# Coordinator wiring
# -----------------------------

_COORDINATOR: Optional[ScanCoordinator] = None


def get_coordinator() -> ScanCoordinator:
    global _COORDINATOR
    if _COORDINATOR is None:
        _COORDINATOR = ScanCoordinator(
            ResultStore(config.DB_PATH),
            logger=logger,
            options=config.ScanOptions.from_env(),
        )
    return _COORDINATOR


# -----------------------------
# App
# -----------------------------

app = FastAPI(
    title="TLS Checker API",
    description="Finds outbound HTTP(S) endpoints in a codebase and checks them for TLS 1.2/1.3 support.",
    version="1.0.0",
)


@app.on_event("startup")
def _startup():
    config.configure_logging()


@app.exception_handler(ResultStoreError)
async def _store_error(request: Request, exc: ResultStoreError):
    logger.error("Error storing TLS scan results: %s", exc)
    return JSONResponse(status_code=500, content={"error": "Failed to store scan results.", "detail": str(exc)})


@app.middleware("http")
async def require_api_key(request: Request, call_next):
    if not config.API_KEY or request.url.path == "/health":
        return await call_next(request)

    provided = request.headers.get("x-api-key", "")
    if provided != config.API_KEY:
        return JSONResponse(status_code=401, content={"detail": "Invalid or missing API key"})
    return await call_next(request)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/urls", response_model=DiscoveryResponse)
def get_urls_to_scan(coordinator: ScanCoordinator = Depends(get_coordinator)):
    return DiscoveryResponse(urls_to_scan=coordinator.discover_urls())


@app.post("/scans/start", response_model=StartScanResponse)
def start_scan(request: StartScanRequest, coordinator: ScanCoordinator = Depends(get_coordinator)):
    pending = coordinator.start_scan(request.directories or None)
    return StartScanResponse(pending=pending)


@app.post("/scans/batch", response_model=BatchResponse)
def process_batch(request: BatchRequest, coordinator: ScanCoordinator = Depends(get_coordinator)):
    if request.batch_size < 1 or request.offset < 0:
        raise HTTPException(status_code=400, detail="offset must be >= 0 and batch_size >= 1.")
    res = coordinator.process_batch(request.batch_size, request.offset)
    return BatchResponse(
        processed=res["processed"],
        remaining=res["remaining"],
        passing=res["passing"],
        failing=res["failing"],
        failing_urls=res["failing_keys"],
    )


@app.post("/scans/urls", response_model=UrlScanResponse)
def scan_urls(request: UrlScanRequest, coordinator: ScanCoordinator = Depends(get_coordinator)):
    logger.debug("Received URLs for batch processing: %s", request.urls)
    if not request.urls:
        return JSONResponse(status_code=400, content={"error": "No URLs provided for scanning."})
    return UrlScanResponse(**coordinator.scan_urls(request.urls))


@app.get("/results", response_model=ResultsResponse)
def get_results(coordinator: ScanCoordinator = Depends(get_coordinator)):
    res = coordinator.get_results()
    return ResultsResponse(
        passing=res["passing"],
        failing=res["failing"],
        passing_urls=res["passing_keys"],
        failing_urls=res["failing_keys"],
    )


@app.post("/reset", response_model=ResetResponse)
def reset_scan(coordinator: ScanCoordinator = Depends(get_coordinator)):
    logger.info("Reset scan request received.")
    try:
        coordinator.reset()
    except ResultStoreError as e:
        return JSONResponse(status_code=500, content={"success": False, "message": str(e)})
    return ResetResponse(success=True, message="TLS scan data has been reset.")
