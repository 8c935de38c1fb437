from typing import List, Optional, Sequence

class PipelineError(Exception):
    """Base class for failures that end a single job."""

    kind = "PipelineError"

    @property
    def reason(self) -> str:
        return self.kind

class InputError(PipelineError):
    kind = "InputError"

class ProbeError(PipelineError):
    kind = "ProbeError"

class WorkspaceError(PipelineError):
    kind = "IOError"

class CancellationError(PipelineError):
    """Early exit because the batch was canceled. Not a failure."""

    kind = "Canceled"

    def __init__(self, stage: Optional[str] = None):
        self.stage = stage
        super().__init__(f"Canceled during {stage}" if stage else "Canceled")

class ExternalToolError(PipelineError):
    kind = "ExternalToolError"

    def __init__(self, stage: str, exit_code: int, last_lines: Optional[Sequence[str]] = None):
        self.stage = stage
        self.exit_code = exit_code
        self.last_lines: List[str] = list(last_lines or [])
        super().__init__(f"{stage} exited with code {exit_code}")

    @property
    def reason(self) -> str:
        return f"{self.kind}: {self.stage} exited with code {self.exit_code}"

class ToolTimeoutError(ExternalToolError):
    """The tool was stopped after running longer than its allowed time."""

    def __init__(self, stage: str, timeout: float, last_lines: Optional[Sequence[str]] = None):
        self.timeout = timeout
        super().__init__(stage, -1, last_lines)
        self.args = (f"{stage} timed out after {timeout:g}s",)

    @property
    def reason(self) -> str:
        return f"{self.kind}: {self.stage} timed out"

class BatchError(Exception):
    """Failure of the batch coordinator itself, surfaced to the caller."""
