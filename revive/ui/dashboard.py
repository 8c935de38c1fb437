import threading
import time
from typing import Optional
from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from revive.ui.state import UIState
from revive.domain.models import JobStatus

class Dashboard:
    """Renders the live dashboard UI."""

    def __init__(self, state: UIState, console: Optional[Console] = None):
        self.state = state
        self.console = console or Console()
        self._live: Optional[Live] = None
        self._refresh_thread: Optional[threading.Thread] = None
        self._stop_refresh = threading.Event()
        self._ui_lock = threading.Lock()
        self._spinner_frame = 0

    def format_time(self, seconds: float) -> str:
        """Format seconds to human readable time"""
        if seconds < 60:
            return f"{int(seconds):02d}s"
        elif seconds < 3600:
            return f"{int(seconds / 60):02d}m {int(seconds % 60):02d}s"
        else:
            return f"{int(seconds / 3600)}h {int((seconds % 3600) / 60):02d}m"

    def format_resolution(self, metadata) -> str:
        if metadata and metadata.width and metadata.height:
            return f"{metadata.width}x{metadata.height}"
        return ""

    def format_bar(self, percent: int, width: int = 20) -> str:
        percent = max(0, min(100, percent))
        filled = int(width * percent / 100)
        return "#" * filled + "-" * (width - filled)

    def _generate_menu_panel(self) -> Panel:
        with self.state._lock:
            shutdown = "on" if self.state.auto_shutdown else "off"
        return Panel(
            f"[bright_red]C[/bright_red] cancel batch | [bright_red]S[/bright_red] auto shutdown ({shutdown})",
            title="MENU",
            border_style="white"
        )

    def _generate_status_panel(self) -> Panel:
        with self.state._lock:
            if self.state.cancel_requested:
                status, color = "CANCELING", "bright_red"
            elif self.state.finished:
                status, color = "FINISHED", "cyan"
            else:
                status, color = "ACTIVE", "green"
            lines = [
                f"[dim]Status:[/] [bold {color}]{status}[/]",
                (
                    f"[dim]Files:[/] {self.state.total_files} | "
                    f"[dim]Done:[/] {self.state.completed_count} | "
                    f"[dim]Failed:[/] {self.state.failed_count} | "
                    f"[dim]Canceled:[/] {self.state.canceled_count}"
                ),
                f"[dim]Elapsed:[/] {self.format_time(self.state.elapsed_seconds())}",
            ]
        return Panel("\n".join(lines), title="BATCH STATUS", border_style="cyan")

    def _generate_processing_panel(self) -> Panel:
        with self.state._lock:
            if not self.state.active_jobs:
                return Panel("No files processing", title="CURRENTLY PROCESSING", border_style="yellow")

            table = Table(show_header=False, box=None, padding=(0, 1))
            table.add_column("", width=1, style="yellow")
            table.add_column("File", style="yellow", width=32, no_wrap=True, overflow="ellipsis")
            table.add_column("Stage", width=13, style="magenta")
            table.add_column("Res", width=9, justify="right", style="cyan")
            table.add_column("Progress", width=26)
            table.add_column("Time", justify="right")

            spinner_frames = "|/-\\"
            now = time.monotonic()
            for idx, job in enumerate(self.state.active_jobs):
                name = job.file_name
                stage = self.state.stages.get(name)
                percent = self.state.progress.get(name, 0)
                elapsed = now - self.state.job_start_times.get(name, now)
                table.add_row(
                    spinner_frames[(self._spinner_frame + idx) % len(spinner_frames)],
                    name,
                    stage.value if stage else "",
                    self.format_resolution(job.metadata),
                    f"{self.format_bar(percent)} {percent:3d}%",
                    self.format_time(elapsed),
                )

        return Panel(table, title="CURRENTLY PROCESSING", border_style="yellow")

    def _generate_recent_panel(self) -> Panel:
        with self.state._lock:
            if not self.state.recent_jobs:
                return Panel("No files finished yet", title="LAST FINISHED", border_style="green")

            table = Table(show_header=False, box=None, padding=(0, 1))
            table.add_column("", width=1)
            table.add_column("File", width=32, no_wrap=True, overflow="ellipsis")
            table.add_column("Result", no_wrap=True, overflow="ellipsis")
            table.add_column("Time", justify="right", style="yellow")

            for job in list(self.state.recent_jobs):
                if job.status == JobStatus.COMPLETED:
                    mark, result = "[green]+[/]", f"[green]{job.output_path.name if job.output_path else ''}[/]"
                elif job.status == JobStatus.CANCELED:
                    mark, result = "[bright_red]x[/]", "[bright_red]CANCELED[/]"
                else:
                    mark, result = "[red]x[/]", f"[red]{job.error_message or 'FAILED'}[/]"
                table.add_row(mark, job.file_name, result, self.format_time(job.duration_seconds or 0))

        return Panel(table, title="LAST FINISHED", border_style="green")

    def _generate_log_panel(self) -> Panel:
        with self.state._lock:
            lines = list(self.state.recent_logs)
        content = "\n".join(reversed(lines)) if lines else "[dim]No tool output yet[/]"
        return Panel(content, title="TOOL OUTPUT", border_style="blue")

    def create_display(self) -> Group:
        return Group(
            self._generate_menu_panel(),
            self._generate_status_panel(),
            self._generate_processing_panel(),
            self._generate_recent_panel(),
            self._generate_log_panel(),
        )

    def _refresh_loop(self):
        """Background thread to update Live display."""
        while not self._stop_refresh.is_set():
            if self._live:
                self._spinner_frame = (self._spinner_frame + 1) % 4
                display = self.create_display()
                with self._ui_lock:
                    self._live.update(display)
            self._stop_refresh.wait(0.5)

    def start(self):
        """Starts the Live display and refresh thread."""
        self._live = Live(self.create_display(), console=self.console, refresh_per_second=4)
        self._live.start()
        self._stop_refresh.clear()
        self._refresh_thread = threading.Thread(target=self._refresh_loop, daemon=True)
        self._refresh_thread.start()
        return self

    def stop(self):
        """Stops the Live display and refresh thread."""
        self._stop_refresh.set()
        if self._refresh_thread:
            self._refresh_thread.join(timeout=1.0)
        if self._live:
            with self._ui_lock:
                self._live.update(self.create_display())
            self._live.stop()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
