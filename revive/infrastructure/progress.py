"""Classifies tool/pipeline output lines into progress markers or log lines.

A progress marker has the form ``<prefix>-<percent> - <file name>``, e.g.
``Loading-35 - holiday.mp4``. Everything else is an opaque log line.
"""
import logging
import re
import threading
from typing import Union
from pydantic import BaseModel
from revive.domain.events import LogEmitted, ProgressUpdated
from revive.infrastructure.event_bus import EventBus

MARKER_PREFIX = "Loading"
MARKER_REGEX = re.compile(r"^\s*(?P<prefix>[A-Za-z][A-Za-z_]*)-(?P<percent>\d{1,3})\s+-\s+(?P<file>\S.*?)\s*$")

class ProgressUpdate(BaseModel):
    file_name: str
    percent: int

class LogLine(BaseModel):
    text: str

def classify(line: str) -> Union[ProgressUpdate, LogLine]:
    """Pure text classification; never raises."""
    text = line.rstrip("\r\n")
    match = MARKER_REGEX.match(text)
    if match:
        percent = int(match.group("percent"))
        if percent <= 100:
            return ProgressUpdate(file_name=match.group("file"), percent=percent)
    return LogLine(text=text)

def format_marker(percent: int, file_name: str, prefix: str = MARKER_PREFIX) -> str:
    return f"{prefix}-{int(percent)} - {file_name}"

class ProgressMultiplexer:
    """Republishes classified lines onto the single outbound event stream."""

    def __init__(self, event_bus: EventBus):
        self.event_bus = event_bus
        self.logger = logging.getLogger(__name__)
        self._lock = threading.Lock()

    def publish_line(self, line: str) -> Union[ProgressUpdate, LogLine]:
        item = classify(line)
        with self._lock:
            if isinstance(item, ProgressUpdate):
                self.event_bus.publish(ProgressUpdated(
                    file_name=item.file_name,
                    percent=item.percent,
                    raw=line.rstrip("\r\n"),
                ))
            else:
                self.logger.debug(f"TOOL: {item.text}")
                self.event_bus.publish(LogEmitted(text=item.text))
        return item

    def publish_progress(self, file_name: str, percent: int) -> ProgressUpdate:
        return self.publish_line(format_marker(percent, file_name))
