"""API routes for upload, conversion, status polling and downloads."""
import logging
from typing import Any, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Query, Request, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel, ConfigDict, Field

from fileforge import config
from fileforge.artifacts import ZIP_CONTENT_TYPE
from fileforge.conversion.registry import all_presets, preset_by_id, presets_for_extension
from fileforge.conversion.service import get_conversion_service
from fileforge.errors import ValidationError
from fileforge.ratelimit import RateLimiter, client_identifier

logger = logging.getLogger("fileforge.api")
router = APIRouter(prefix="/api", tags=["fileforge"])

_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter()
    return _rate_limiter


def rate_limited(request: Request) -> None:
    get_rate_limiter().check(client_identifier(request))


class ConvertRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_id: str = Field(..., alias="fileId", min_length=1)
    conversion_type: str = Field(..., alias="conversionType", min_length=1)
    advanced_options: Optional[dict[str, Any]] = Field(None, alias="advancedOptions")


class CombineRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_ids: list[str] = Field(..., alias="fileIds", min_length=1)
    conversion_type: str = Field(..., alias="conversionType", min_length=1)
    advanced_options: Optional[dict[str, Any]] = Field(None, alias="advancedOptions")


class BatchConvertRequest(BaseModel):
    items: list[ConvertRequest] = Field(..., min_length=1)


class ZipOutputsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_ids: list[str] = Field(..., alias="jobIds", min_length=1)


def _attachment(filename: str) -> dict[str, str]:
    return {"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"}


@router.get("/health")
def health():
    return {"status": "ok", "mediaConversions": config.media_conversions_available()}


@router.get("/limits")
def get_limits():
    """Upload limits for the client."""
    return {
        "max_file_size_mb": config.MAX_FILE_SIZE_MB,
        "max_file_size_bytes": config.MAX_FILE_SIZE_BYTES,
        "max_files_per_upload": config.MAX_FILES_PER_UPLOAD,
        "rate_limit_per_minute": config.RATE_LIMIT_REQUESTS_PER_MINUTE,
        "job_ttl_seconds": config.JOB_TTL_SECONDS,
    }


@router.get("/presets")
def get_presets(extension: Optional[str] = Query(None, description="Source extension, e.g. png")):
    """Presets accepting ``extension``; every preset when omitted."""
    presets = presets_for_extension(extension) if extension is not None else all_presets()
    return {"presets": [p.to_dict() for p in presets]}


@router.get("/presets/{conversion_type}")
def get_preset(conversion_type: str):
    return preset_by_id(conversion_type).to_dict()


@router.post("/upload", dependencies=[Depends(rate_limited)])
async def upload_files(files: list[UploadFile] = File(...)):
    """Store one or more files; returns a FileInfo (with fileId) per file."""
    if len(files) > config.MAX_FILES_PER_UPLOAD:
        raise ValidationError(f"Max {config.MAX_FILES_PER_UPLOAD} files per upload")
    svc = get_conversion_service()
    stored = []
    for file in files:
        data = bytearray()
        while chunk := await file.read(1024 * 1024):
            data += chunk
            if len(data) > config.MAX_FILE_SIZE_BYTES:
                raise ValidationError(f"File too large: {file.filename} (max {config.MAX_FILE_SIZE_MB} MB)")
        info = svc.uploads.save(file.filename or "upload", bytes(data), file.content_type)
        stored.append(info.to_dict())
    return {"files": stored}


@router.post("/convert", dependencies=[Depends(rate_limited)])
def convert(body: ConvertRequest):
    job_id = get_conversion_service().start_conversion(body.file_id, body.conversion_type, body.advanced_options)
    return {"jobId": job_id}


@router.post("/combine", dependencies=[Depends(rate_limited)])
def combine(body: CombineRequest):
    """One job over several uploads, e.g. merge-pdf or images-to-pdf."""
    job_id = get_conversion_service().start_combined(body.file_ids, body.conversion_type, body.advanced_options)
    return {"jobId": job_id}


@router.post("/convert-batch", dependencies=[Depends(rate_limited)])
def convert_batch(body: BatchConvertRequest):
    items = [
        {"fileId": i.file_id, "conversionType": i.conversion_type, "advancedOptions": i.advanced_options}
        for i in body.items
    ]
    return {"items": get_conversion_service().start_batch(items)}


@router.get("/status/{job_id}")
def get_status(job_id: str):
    return get_conversion_service().get_status(job_id).to_dict()


@router.get("/download/{job_id}")
def download(job_id: str, file_index: int = Query(0, ge=0)):
    data, content_type, filename = get_conversion_service().download_result(job_id, file_index)
    return Response(content=data, media_type=content_type, headers=_attachment(filename))


@router.get("/download-zip/{job_id}")
def download_zip(job_id: str):
    data = get_conversion_service().download_zip(job_id)
    return Response(content=data, media_type=ZIP_CONTENT_TYPE, headers=_attachment(f"converted_{job_id[:8]}.zip"))


@router.post("/zip-outputs")
def zip_outputs(body: ZipOutputsRequest):
    """Download all: one zip across several completed jobs."""
    data = get_conversion_service().zip_outputs(body.job_ids)
    return Response(content=data, media_type=ZIP_CONTENT_TYPE, headers=_attachment("converted_files.zip"))
