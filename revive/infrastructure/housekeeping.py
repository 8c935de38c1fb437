import logging
from pathlib import Path
from revive.infrastructure.workspace import WorkspaceManager

class HousekeepingService:
    """Removes leftovers of an interrupted previous run."""

    def __init__(self, workspace_manager: WorkspaceManager):
        self.workspace_manager = workspace_manager
        self.logger = logging.getLogger(__name__)

    def cleanup_partial_outputs(self, output_dir: Path) -> int:
        if not output_dir.exists():
            return 0
        count = 0
        for part in output_dir.glob(".*.part"):
            part.unlink()
            count += 1
        if count:
            self.logger.info(f"Cleaned up {count} partial output files in {output_dir}")
        return count

    def cleanup(self, output_dir: Path) -> int:
        return self.workspace_manager.sweep_orphans() + self.cleanup_partial_outputs(output_dir)
