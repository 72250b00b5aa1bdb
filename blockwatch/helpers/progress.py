"""Rich progress display for block range commands."""

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)


def create_block_progress(
    console: Console | None = None, *, expand: bool = False
) -> Progress:
    """Create a progress bar for indexing a known range of blocks.

    Tasks are expected to carry a ``block`` field holding the latest
    completed block number, see ``add_block_task``.

    Example:
        ```python
        progress = create_block_progress(Console())

        with progress:
            task_id = add_block_task(progress, start_block=100, end_block=199)
            progress.update(task_id, advance=1, block=100)
        ```
    """
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TextColumn("[cyan]#{task.fields[block]}"),
        TimeElapsedColumn(),
        TextColumn("eta"),
        TimeRemainingColumn(),
        console=console,
        expand=expand,
    )


def add_block_task(
    progress: Progress,
    *,
    start_block: int,
    end_block: int,
    description: str = "Indexing blocks",
) -> TaskID:
    """Add a task covering ``start_block..end_block`` inclusive."""
    return progress.add_task(
        description, total=end_block - start_block + 1, block=start_block - 1
    )


__all__ = ["add_block_task", "create_block_progress"]
