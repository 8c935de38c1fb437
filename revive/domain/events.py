from typing import Dict
from pydantic import BaseModel
from .models import JobStage, UpscaleJob

class Event(BaseModel):
    """Base class for all domain events."""
    pass

class JobEvent(Event):
    job: UpscaleJob

class JobStarted(JobEvent):
    pass

class JobStageChanged(JobEvent):
    stage: JobStage

class JobCompleted(JobEvent):
    pass

class JobFailed(JobEvent):
    error_message: str

class JobCanceled(JobEvent):
    pass

class ProgressUpdated(Event):
    """A progress marker seen on the outbound stream."""
    file_name: str
    percent: int
    raw: str

class LogEmitted(Event):
    """An opaque log line seen on the outbound stream."""
    text: str

class BatchStarted(Event):
    total_files: int

class BatchFinished(Event):
    statuses: Dict[str, str]
    canceled: bool = False
    elapsed_seconds: float = 0.0

class CancelRequested(Event):
    pass

class AutoShutdownToggled(Event):
    enabled: bool
