"""
Explicit, atomically written snapshots of the run context.

A checkpoint is written after metadata vetting, after experiment construction and
after table export. It is only read when the run is started with `resume`.
"""
# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
import os
import pickle
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

# Local Imports
from workflow_metagenomics import constants
from workflow_metagenomics.context import RunContext, Stage

# ========================== INITIALISATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

CHECKPOINT_VERSION = 1

# ===================================== CLASSES ====================================== #

@dataclass(frozen=True)
class Checkpoint:
    stage: Stage
    context: RunContext
    written_at: str
    version: int = CHECKPOINT_VERSION

# ==================================== FUNCTIONS ===================================== #

def save_checkpoint(path: Union[str, Path], context: RunContext) -> Checkpoint:
    """Write `context` to `path`, replacing any previous checkpoint atomically."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    checkpoint = Checkpoint(
        stage=context.stage,
        context=context.advance(bundles=None),
        written_at=datetime.now().isoformat(timespec="seconds"),
    )
    fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as file:
            pickle.dump(checkpoint, file, protocol=pickle.HIGHEST_PROTOCOL)
            file.flush()
            os.fsync(file.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise
    logger.info(f"Checkpoint written after {checkpoint.stage.name} → {path}")
    return checkpoint


def load_checkpoint(path: Union[str, Path]) -> Optional[Checkpoint]:
    """Read the checkpoint at `path`, or None if there is none or it is unusable."""
    path = Path(path)
    if not path.exists():
        return None
    try:
        with open(path, "rb") as file:
            checkpoint = pickle.load(file)
    except (pickle.UnpicklingError, EOFError, AttributeError, ImportError) as e:
        logger.warning(f"Ignoring unreadable checkpoint {path}: {e}")
        return None
    if not isinstance(checkpoint, Checkpoint) or checkpoint.version != CHECKPOINT_VERSION:
        logger.warning(f"Ignoring checkpoint {path}: incompatible format")
        return None
    logger.info(
        f"Loaded checkpoint from {checkpoint.written_at} "
        f"(completed stage: {checkpoint.stage.name})"
    )
    return checkpoint
