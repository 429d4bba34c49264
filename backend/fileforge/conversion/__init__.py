from .dispatcher import FormatDispatcher
from .models import AdvancedOptions, ConversionPreset, Job, JobStatus
from .service import ConversionService

__all__ = ["ConversionService", "FormatDispatcher", "AdvancedOptions", "ConversionPreset", "Job", "JobStatus"]
