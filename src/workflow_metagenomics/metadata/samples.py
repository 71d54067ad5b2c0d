# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple

# Local Imports
from workflow_metagenomics import constants

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger(constants.LOGGER_NAME)

# ===================================== CLASSES ====================================== #

@dataclass(frozen=True)
class SampleSet:
    """Outcome of matching wanted samples against the samples that have data.

    Attributes:
        entries:  Every wanted sample, in wanted order, with whether it has data.
        resolved: Wanted samples that have data, in wanted order.
        missing:  Wanted samples without data, in wanted order.
        extra:    Samples with data that nobody asked for, in bundle order.
    """
    entries: Tuple[Tuple[str, bool], ...]
    resolved: Tuple[str, ...]
    missing: Tuple[str, ...]
    extra: Tuple[str, ...]

    def __len__(self) -> int:
        return len(self.resolved)

    def __contains__(self, sample_id: object) -> bool:
        return sample_id in self.resolved

# ==================================== FUNCTIONS ===================================== #

def exclude_duplicates(names: Iterable[str], prefixes: Sequence[str]) -> List[str]:
    """Drop names starting with any of `prefixes`."""
    names = list(names)
    if not prefixes:
        return names
    prefixes = tuple(prefixes)
    kept = [n for n in names if not str(n).startswith(prefixes)]
    dropped = len(names) - len(kept)
    if dropped:
        logger.info(f"Excluded {dropped} duplicate bundles (prefixes: {list(prefixes)})")
    return kept


def resolve_samples(
    wanted: Sequence[str],
    available: Iterable[str],
    duplicate_prefixes: Sequence[str] = ()
) -> SampleSet:
    """Intersect the wanted samples with the samples that have data.
    
    Args:
        wanted:             Sample IDs from the metadata, in metadata order.
        available:          Sample IDs that have a loaded bundle.
        duplicate_prefixes: Available IDs starting with these are ignored.
    
    Returns:
        SampleSet ordered like `wanted`. Missing samples are logged as a warning,
        never raised; an empty result is left for the metadata vetting to reject.
    """
    available = exclude_duplicates([str(s) for s in available], duplicate_prefixes)
    available_set = set(available)

    seen = set()
    entries = []
    for sample_id in map(str, wanted):
        if sample_id in seen:
            continue
        seen.add(sample_id)
        entries.append((sample_id, sample_id in available_set))

    resolved = tuple(s for s, present in entries if present)
    missing = tuple(s for s, present in entries if not present)
    extra = tuple(s for s in available if s not in seen)

    if missing:
        logger.warning(
            f"{len(missing)} samples in the metadata have no data and will be "
            f"skipped: {', '.join(missing)}"
        )
    if extra:
        logger.debug(f"{len(extra)} samples have data but no metadata: {', '.join(extra)}")
    logger.info(f"{'Resolved samples:':<30}{len(resolved):>6}")
    return SampleSet(
        entries=tuple(entries), resolved=resolved, missing=missing, extra=extra
    )
