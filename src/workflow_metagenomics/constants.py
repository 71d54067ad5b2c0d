from pathlib import Path

# ==================================================================================== #
# PROGRESS BAR
# ==================================================================================== #
# See supported colors at: https://www.w3schools.com/colors/colors_x11.asp

# Total character width of the progress bar text
DEFAULT_PROGRESS_TEXT_N: int = 65
DEFAULT_N: int = 65
# Color of the progress bar description text
DEFAULT_DESCRIPTION_STYLE: str = "white"
# Width of the progress bar
DEFAULT_BAR_WIDTH: int = 40
# Color of the filled/complete portion of the progress bar
DEFAULT_BAR_COLUMN_COMPLETE_STYLE: str = "honeydew2"
# Color used when the progress bar is finished
DEFAULT_FINISHED_STYLE: str = "dark_cyan"
# Color of the percentage complete text (e.g., "85%")
DEFAULT_PROGRESS_PERCENTAGE_STYLE: str = "honeydew2"
# Color of the "X of Y complete" text (e.g., "42 of 65")
DEFAULT_M_OF_N_COMPLETE_STYLE: str = "honeydew2"
# Color of the time elapsed display (e.g., "E: 00:01:25")
DEFAULT_TIME_ELAPSED_STYLE: str = "light_sky_blue1"
# Color of the estimated time remaining display (e.g., "R: 00:00:34")
DEFAULT_TIME_REMAINING_STYLE: str = "thistle1"

# ==================================================================================== #
# SETTINGS
# ==================================================================================== #
# Go up two levels
DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[2] / "references" / "config.yaml"
LOGGER_NAME = "workflow_metagenomics"

# ==================================================================================== #
# BUNDLES
# ==================================================================================== #
BUNDLE_MANIFEST = "manifest.yaml"
# Loading this many samples or more triggers a progress warning
BUNDLE_WARNING_THRESHOLD: int = 200
DEFAULT_LOAD_WORKERS: int = 4

CATEGORY_TAXONOMIC = "taxonomic"
CATEGORY_FUNCTIONAL = "functional"
ANALYSIS_CATEGORIES = (CATEGORY_TAXONOMIC, CATEGORY_FUNCTIONAL)

FEATURE_COLUMN = "feature"
COUNT_COLUMN = "count"
TAXON_COLUMN = "taxon"
STRATIFIED_SEPARATOR = "|"

READ_STATS_GBP = "assembled_gbp"
READ_STATS_PERCENT = "percent_assembled"

# ==================================================================================== #
# METADATA
# ==================================================================================== #
PHENOTYPES_SHEET = "phenotypes"
PHENOLABELS_SHEET = "phenolabels"
PHENOLABELS_COLUMNS = ("label", "kind")

KIND_SAMPLE = "Sample"
KIND_DISCRETE = "Discrete"
KIND_CONTINUOUS = "Continuous"
KIND_IGNORE = "Ignore"
VARIABLE_KINDS = (KIND_SAMPLE, KIND_DISCRETE, KIND_CONTINUOUS, KIND_IGNORE)

# Column names accepted as the sample identifier when no phenolabels are supplied
SAMPLE_COLUMN_CANDIDATES = ("Sample",)

DEFAULT_MAX_DISCRETE_CLASSES: int = 15
DEFAULT_MAX_DISCRETE_SUBCLASSES: int = 6
DEFAULT_IGNORE_VALUES = ("NA", "N/A", "", "unknown")

# ==================================================================================== #
# REPORTS
# ==================================================================================== #
REPORT_ORDINATION = "ordination"
REPORT_COMPARATIVE = "comparative"
REPORT_CORRELATION = "correlation"
REPORT_EXPLORATORY = "exploratory"
REPORT_PRESENCE_ABSENCE = "presence_absence"
REPORT_ALPHA = "alpha"
# Submission order of report kinds
REPORT_KINDS = (
    REPORT_ORDINATION,
    REPORT_COMPARATIVE,
    REPORT_CORRELATION,
    REPORT_EXPLORATORY,
    REPORT_PRESENCE_ABSENCE,
    REPORT_ALPHA,
)
ORDINATION_METHODS = ("pca", "pcoa")
DEFAULT_ORDINATION_METHODS = ("pcoa",)

# CPUs held back for the controlling process
RESERVED_CPUS: int = 2
POOL_BACKENDS = ("process", "thread")

DEFAULT_TOP_N_FEATURES: int = 20
DEFAULT_P_VALUE_THRESHOLD: float = 0.05
DEFAULT_PREVALENCE_THRESHOLD: float = 0.0

# ==================================================================================== #
# OUTPUT
# ==================================================================================== #
REPORTS_DIR = "Reports"
TABLES_DIR = "Tables"
LOGS_DIR = "logs"
CHECKPOINT_FILE = "checkpoint.pkl"

# Qualitative palette for discrete metadata classes (D3 category10)
DEFAULT_PALETTE = (
    "#1f77b4", "#ff7f0e", "#2ca02c", "#d62728", "#9467bd",
    "#8c564b", "#e377c2", "#7f7f7f", "#bcbd22", "#17becf",
)
