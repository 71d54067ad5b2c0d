# ===================================== IMPORTS ====================================== #

# Third-Party Imports
from rich.progress import (
    BarColumn, Column, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn,
    TimeElapsedColumn, TimeRemainingColumn
)

# Local Imports
from workflow_metagenomics import constants

# ===================================== FUNCTIONS ==================================== #

def _styled(style: str) -> Column:
    return Column(style=style, justify="right")


def get_progress_bar(transient: bool = False) -> Progress:
    """Progress bar shared by loading, building and report generation."""
    return Progress(
        SpinnerColumn("dots", style=constants.DEFAULT_BAR_COLUMN_COMPLETE_STYLE, speed=0.75),
        TextColumn(
            "{task.description}",
            style=constants.DEFAULT_DESCRIPTION_STYLE,
            table_column=Column(min_width=constants.DEFAULT_PROGRESS_TEXT_N),
        ),
        MofNCompleteColumn(table_column=_styled(constants.DEFAULT_M_OF_N_COMPLETE_STYLE)),
        BarColumn(
            bar_width=constants.DEFAULT_BAR_WIDTH,
            complete_style=constants.DEFAULT_BAR_COLUMN_COMPLETE_STYLE,
            finished_style=constants.DEFAULT_FINISHED_STYLE
        ),
        TextColumn(
            "{task.percentage:>3.0f}%",
            style=constants.DEFAULT_PROGRESS_PERCENTAGE_STYLE,
            justify="right"
        ),
        TimeElapsedColumn(table_column=_styled(constants.DEFAULT_TIME_ELAPSED_STYLE)),
        TimeRemainingColumn(
            compact=True, table_column=_styled(constants.DEFAULT_TIME_REMAINING_STYLE)
        ),
        transient=transient,
        expand=False
    )


def _format_task_desc(desc: str) -> str:
    return f"[white]{str(desc):<{constants.DEFAULT_N}}"
