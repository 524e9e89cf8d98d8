"""
Marketplace Import Router
Upload -> detect -> process flow for Amazon / Flipkart / Meesho CSV exports
"""
from fastapi import APIRouter, UploadFile, File, HTTPException, Depends
from pydantic import BaseModel
from typing import Dict, Optional
import logging
import uuid

from services.import_errors import ImportFailure
from services.import_orchestrator import ImportOrchestrator
from services.marketplace_detector import detect
from services.storage import StorageService, get_storage
from services.upload_cache import UploadCache, get_upload_cache
from settings import UPLOAD_MAX_BYTES

logger = logging.getLogger(__name__)
router = APIRouter()


class DetectRequest(BaseModel):
    fileId: str


class ProcessRequest(BaseModel):
    fileId: str
    marketplace: Optional[str] = None
    importType: Optional[str] = "auto"
    mappings: Optional[Dict[str, str]] = None


def _cached_or_404(cache: UploadCache, file_id: str):
    entry = cache.get(file_id)
    if not entry:
        raise HTTPException(status_code=404, detail="File not found or expired. Please upload again")
    return entry


@router.post("/import/upload")
async def upload_file(
    file: UploadFile = File(...),
    cache: UploadCache = Depends(get_upload_cache),
):
    request_id = str(uuid.uuid4())
    try:
        logger.info(f"[{request_id}] Upload attempt filename={file.filename!r} content_type={file.content_type!r}")

        if not file.filename or not file.filename.lower().endswith(".csv"):
            logger.warning(f"[{request_id}] Reject non-CSV filename={file.filename!r}")
            raise HTTPException(status_code=400, detail="Only CSV files are allowed")

        content = await file.read()
        size = len(content or b"")
        logger.info(f"[{request_id}] Received payload size={size} bytes")

        if size == 0:
            raise HTTPException(status_code=400, detail="Empty file")
        if size > UPLOAD_MAX_BYTES:
            raise HTTPException(
                status_code=400,
                detail=f"File too large. Maximum size is {UPLOAD_MAX_BYTES // (1024 * 1024)}MB",
            )

        entry = cache.put(file.filename, content)
        return {
            "fileId": entry.file_id,
            "originalname": entry.filename,
            "size": entry.size,
            "requestId": request_id,
        }

    except HTTPException as he:
        logger.error(f"[{request_id}] HTTP {he.status_code} during upload: {he.detail}")
        raise
    except Exception:
        logger.exception(f"[{request_id}] Upload error")
        raise HTTPException(status_code=500, detail="Upload failed")


@router.post("/import/detect")
async def detect_marketplace(
    request: DetectRequest,
    cache: UploadCache = Depends(get_upload_cache),
):
    """Guess the marketplace and import type of an uploaded file"""
    try:
        entry = _cached_or_404(cache, request.fileId)
        result = detect(entry.text(), entry.filename)
        return result.to_dict()
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Detect error: {e}")
        raise HTTPException(status_code=500, detail="Failed to detect marketplace")


@router.post("/import/process")
async def process_import(
    request: ProcessRequest,
    store: StorageService = Depends(get_storage),
    cache: UploadCache = Depends(get_upload_cache),
):
    """Run the import synchronously and return its summary"""
    try:
        if not request.marketplace:
            raise HTTPException(status_code=400, detail="fileId and marketplace are required")
        entry = _cached_or_404(cache, request.fileId)

        orchestrator = ImportOrchestrator(store)
        summary = await orchestrator.run_import(
            entry.text(),
            request.marketplace,
            import_type=request.importType,
            mappings=request.mappings,
            filename=entry.filename,
        )
        cache.discard(request.fileId)
        return {"message": "Import completed", "results": summary.to_dict()}

    except HTTPException:
        raise
    except ImportFailure as e:
        logger.warning(f"Import rejected fileId={request.fileId}: {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"Import error fileId={request.fileId}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Import failed")
