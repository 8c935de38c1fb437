import logging
import platform
import subprocess
from pathlib import Path
from typing import List

logger = logging.getLogger(__name__)

def open_folder_command(path: Path, system: str = None) -> List[str]:
    system = system or platform.system()
    if system == "Windows":
        return ["explorer", str(path)]
    if system == "Darwin":
        return ["open", str(path)]
    return ["xdg-open", str(path)]

def shutdown_command(system: str = None) -> List[str]:
    system = system or platform.system()
    if system == "Windows":
        return ["shutdown", "/s", "/t", "0"]
    if system == "Darwin":
        return ["osascript", "-e", 'tell app "System Events" to shut down']
    return ["systemctl", "poweroff"]

def open_output_location(path: Path):
    """Opens the folder holding finished artifacts in the host file browser."""
    path.mkdir(parents=True, exist_ok=True)
    cmd = open_folder_command(path)
    logger.info(f"Opening output folder: {path}")
    # The file browser outlives us; don't wait for it
    subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)

def shutdown_host():
    cmd = shutdown_command()
    logger.warning(f"Shutting down host: {' '.join(cmd)}")
    result = subprocess.run(cmd, capture_output=True, text=True)
    if result.returncode != 0:
        raise RuntimeError(f"Shutdown command failed ({result.returncode}): {result.stderr.strip()}")
