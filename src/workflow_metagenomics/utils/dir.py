# ===================================== IMPORTS ====================================== #

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Union
import logging

# Local Imports
from workflow_metagenomics import constants

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

# ==================================== CLASSES ===================================== #

class Dir:
    """Simple directory management class for basic operations"""
    
    def __init__(self, dir_path: Union[str, Path]):
        self.dir_path = Path(dir_path).resolve()
    
    def create(self, mode: int = 0o755) -> Path:
        """Create the directory (and parents) if it doesn't exist.
        
        Args:
            mode: Directory permissions (default: 755)
            
        Returns:
            The directory path.
        """
        if not self.dir_path.exists():
            self.dir_path.mkdir(parents=True, exist_ok=True, mode=mode)
            logger.debug(f"Created directory: {self.dir_path}")
        return self.dir_path
    
    def __str__(self) -> str:
        return f"Dir({self.dir_path})"
    
    def __repr__(self) -> str:
        return f"Dir(dir_path={self.dir_path!r})"


@dataclass
class DirectoryConfig:
    """Configuration for directory structure"""
    reports: str = constants.REPORTS_DIR
    tables: str = constants.TABLES_DIR
    logs: str = constants.LOGS_DIR
    checkpoint: str = constants.CHECKPOINT_FILE


class ProjectDir:
    """Manages the output tree of one reporting run.

    Layout::

        <main>/
            Reports/<analysis>/<kind>/
            Tables/
            logs/
            checkpoint.pkl
    """
    
    def __init__(self, dir_path: Union[str, Path], config: DirectoryConfig = None, 
                 auto_create: bool = True):
        self.main = Path(dir_path).resolve()
        self.config = config or DirectoryConfig()

        self.reports = self.main / self.config.reports
        self.tables = self.main / self.config.tables
        self.logs = self.main / self.config.logs
        self.checkpoint = self.main / self.config.checkpoint

        if auto_create:
            self.create_dirs()

    def create_dirs(self) -> None:
        for path in (self.main, self.logs):
            Dir(path).create()

    def report_dir(self, analysis: str) -> Path:
        return self.reports / analysis

    def create_report_dirs(self, analyses: Iterable[str]) -> List[Path]:
        """Create `Reports/<analysis>/` for every analysis before jobs are scheduled."""
        return [Dir(self.report_dir(analysis)).create() for analysis in analyses]

    def __repr__(self) -> str:
        return f"ProjectDir(main={self.main!r})"
