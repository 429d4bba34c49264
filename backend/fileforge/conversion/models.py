"""Conversion catalog, option and job models."""
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class Category(str, Enum):
    IMAGE = "image"
    AUDIO = "audio"
    VIDEO = "video"
    DOCUMENT = "document"
    DATA = "data"
    PDF = "pdf"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


# Output keeps the source format (image-resize).
SAME_FORMAT = "same"


@dataclass(frozen=True)
class ConversionPreset:
    id: str
    label: str
    from_extensions: frozenset
    to_extension: str
    category: Category
    requires_advanced: bool = False
    # Overrides the category's mandatory option fields when set.
    required_options: tuple = ()
    # Number of uploaded files one job takes.
    min_files: int = 1
    max_files: int = 1

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "fromExtensions": sorted(self.from_extensions),
            "toExtension": self.to_extension,
            "category": self.category.value,
            "requiresAdvanced": self.requires_advanced,
            "minFiles": self.min_files,
            "maxFiles": self.max_files,
        }


class AdvancedOptions(BaseModel):
    """Optional per-category settings. Accepts camelCase keys from clients."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    # Image
    width: Optional[int] = Field(None, ge=1, le=16384)
    height: Optional[int] = Field(None, ge=1, le=16384)
    quality: Optional[int] = Field(None, ge=1, le=100)
    # "fill" stretches to exactly width x height
    fit: Optional[Literal["contain", "fill"]] = None
    # Audio (seconds)
    trim_start: Optional[float] = Field(None, alias="trimStart", ge=0)
    trim_end: Optional[float] = Field(None, alias="trimEnd", gt=0)
    # Video ("WxH")
    resolution: Optional[str] = None
    # Data
    sheet_name: Optional[str] = Field(None, alias="sheetName")
    # PDF. pages is 1-based, e.g. "1-3, 5"
    pages: Optional[str] = Field(None, max_length=500)
    rotation: Optional[int] = Field(None, ge=-360, le=360)
    watermark_text: Optional[str] = Field(None, alias="watermarkText", min_length=1, max_length=200)
    font_size: Optional[int] = Field(None, alias="fontSize", ge=6, le=200)
    opacity: Optional[int] = Field(None, ge=0, le=100)
    position: Optional[Literal["diagonal", "center", "footer"]] = None
    password: Optional[str] = Field(None, min_length=4, max_length=128)
    page_size: Optional[Literal["a4", "letter", "fit"]] = Field(None, alias="pageSize")


@dataclass
class FileInfo:
    """Upload acknowledgment; discarded once a job is created from it."""

    id: str
    name: str
    size: int
    mime_type: str
    path: str
    created_at: float
    chosen_preset: Optional[str] = None

    @property
    def extension(self) -> str:
        return self.name.rsplit(".", 1)[-1].lower() if "." in self.name else ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "size": self.size,
            "mimeType": self.mime_type,
        }


@dataclass
class Job:
    job_id: str
    created_at: float
    expires_at: float
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    message: Optional[str] = None
    result_files: Optional[list[str]] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    conversion_type: Optional[str] = None
    source_name: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "jobId": self.job_id,
            "status": self.status.value,
            "progress": self.progress,
            "message": self.message,
            "resultFiles": [Path(p).name for p in self.result_files] if self.result_files else None,
            "error": self.error,
            "errorCode": self.error_code,
            "conversionType": self.conversion_type,
        }
