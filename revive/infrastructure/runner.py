import logging
import os
import signal
import subprocess
import threading
import time
from collections import deque
from pathlib import Path
from typing import Callable, Deque, List, Optional, Sequence
from revive.domain.errors import CancellationError, ExternalToolError, ToolTimeoutError
from revive.pipeline.cancellation import CancelToken

OutputCallback = Callable[[str], None]

def _popen_kwargs() -> dict:
    """Platform flags: own process group on POSIX, no console window on Windows."""
    if os.name == "nt":
        return {"creationflags": getattr(subprocess, "CREATE_NO_WINDOW", 0)}
    return {"start_new_session": True}

class ToolRunner:
    """Runs one external process for one pipeline stage.

    Output (stderr merged into stdout) is streamed line by line to the
    callback in the order the tool wrote it. The call blocks until the
    process exits or the cancel token fires; on cancel the process gets
    SIGTERM, then SIGKILL after ``grace_seconds``. A ``timeout`` stops the
    process the same way and raises ToolTimeoutError.

    With ``capture_stdout`` only stderr is streamed; stdout is kept whole
    in ``self.stdout`` for tools that print a document there.
    """

    def __init__(
        self,
        stage: str,
        cancel_token: CancelToken,
        grace_seconds: float = 5.0,
        tail_size: int = 20,
        poll_interval: float = 0.1,
        timeout: Optional[float] = None,
    ):
        self.stage = stage
        self.cancel_token = cancel_token
        self.grace_seconds = grace_seconds
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.tail: Deque[str] = deque(maxlen=tail_size)
        self.stdout = ""
        self.logger = logging.getLogger(__name__)

    def _read_all(self, stream):
        self.stdout = stream.read()

    def _pump(self, stream, on_output_line: Optional[OutputCallback]):
        for raw in stream:
            line = raw.rstrip("\r\n")
            if not line:
                continue
            self.tail.append(line)
            if on_output_line is not None:
                try:
                    on_output_line(line)
                except Exception as e:
                    self.logger.error(f"{self.stage}: output callback failed: {e}")

    def _signal(self, process: subprocess.Popen, force: bool):
        if os.name != "nt":
            try:
                os.killpg(process.pid, signal.SIGKILL if force else signal.SIGTERM)
                return
            except ProcessLookupError:
                return
            except PermissionError:
                pass
        if force:
            process.kill()
        else:
            process.terminate()

    def _terminate(self, process: subprocess.Popen):
        self.logger.info(f"TOOL_TERMINATE: {self.stage} pid={process.pid}")
        self._signal(process, force=False)
        try:
            process.wait(timeout=self.grace_seconds)
        except subprocess.TimeoutExpired:
            self.logger.warning(
                f"TOOL_KILL: {self.stage} pid={process.pid} still running after {self.grace_seconds}s"
            )
            self._signal(process, force=True)
            process.wait()

    def run(
        self,
        command: Sequence[str],
        cwd: Optional[Path] = None,
        on_output_line: Optional[OutputCallback] = None,
        capture_stdout: bool = False,
    ) -> int:
        """Returns 0 on success; raises CancellationError or ExternalToolError otherwise."""
        self.cancel_token.raise_if_cancelled(self.stage)

        cmd: List[str] = [str(c) for c in command]
        self.logger.debug(f"TOOL_START: {self.stage}: {' '.join(cmd)}")
        start_time = time.monotonic()

        try:
            process = subprocess.Popen(
                cmd,
                cwd=str(cwd) if cwd else None,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE if capture_stdout else subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                **_popen_kwargs(),
            )
        except OSError as e:
            raise ExternalToolError(self.stage, 127, [f"{cmd[0]}: {e}"]) from e

        readers = [threading.Thread(
            target=self._pump,
            args=(process.stderr if capture_stdout else process.stdout, on_output_line),
            name=f"runner-{self.stage}",
            daemon=True,
        )]
        if capture_stdout:
            readers.append(threading.Thread(
                target=self._read_all,
                args=(process.stdout,),
                name=f"runner-{self.stage}-stdout",
                daemon=True,
            ))
        for reader in readers:
            reader.start()

        canceled = False
        timed_out = False
        try:
            while process.poll() is None:
                if self.cancel_token.wait(self.poll_interval):
                    canceled = True
                    self._terminate(process)
                    break
                if self.timeout is not None and time.monotonic() - start_time > self.timeout:
                    timed_out = True
                    self._terminate(process)
                    break
        finally:
            if process.poll() is None:
                self._signal(process, force=True)
                process.wait()
            for reader in readers:
                reader.join()
            process.stdout.close()
            if process.stderr is not None:
                process.stderr.close()

        elapsed = time.monotonic() - start_time
        if canceled:
            self.logger.info(f"TOOL_END: {self.stage} status=canceled elapsed={elapsed:.2f}s")
            raise CancellationError(self.stage)
        if timed_out:
            self.logger.error(f"TOOL_END: {self.stage} status=timeout elapsed={elapsed:.2f}s")
            raise ToolTimeoutError(self.stage, self.timeout, list(self.tail))

        exit_code = process.returncode
        if exit_code != 0:
            self.logger.error(
                f"TOOL_END: {self.stage} status=failed code={exit_code} elapsed={elapsed:.2f}s\n"
                + "\n".join(self.tail)
            )
            raise ExternalToolError(self.stage, exit_code, list(self.tail))

        self.logger.debug(f"TOOL_END: {self.stage} status=completed elapsed={elapsed:.2f}s")
        return exit_code
