"""Rich progress display for multi-image uploads from the CLI.

Purely presentation: the CLI reports each finished upload here. The
pipeline itself never touches the display.
"""

from __future__ import annotations

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
)


class UploadProgressTracker:
    """Single-bar progress tracker with per-outcome counters.

    Usage::

        with UploadProgressTracker(total_files=3) as tracker:
            tracker.image_uploaded("a.png")
            tracker.image_reused("b.png")
            tracker.image_failed("c.png", "Repository not found.")
    """

    def __init__(self, total_files: int, console: Console | None = None) -> None:
        self._total_files = total_files
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TextColumn("{task.fields[status]}", style="dim"),
            console=console,
        )
        self._task: TaskID | None = None
        self._stats: dict[str, int] = {
            "uploaded": 0,
            "reused": 0,
            "failed": 0,
            "rate_limited": 0,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self._progress.start()
        self._task = self._progress.add_task(
            "[green]Uploading", total=self._total_files, status="starting..."
        )

    def stop(self) -> None:
        self._progress.stop()

    def __enter__(self) -> UploadProgressTracker:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Image-level events
    # ------------------------------------------------------------------

    def image_uploaded(self, file_path: str) -> None:
        self._record("uploaded", _truncate_path(file_path))

    def image_reused(self, file_path: str) -> None:
        """Record an image served from the deduplication cache."""
        self._record("reused", f"[cyan]cached[/cyan] {_truncate_path(file_path)}")

    def image_failed(self, file_path: str, error: str) -> None:
        self._record("failed", f"[red]FAIL[/red] {_truncate_path(file_path)}: {error}")

    def image_rate_limited(self, file_path: str) -> None:
        self._record("rate_limited", f"[yellow]rate limited[/yellow] {_truncate_path(file_path)}")

    @property
    def stats(self) -> dict[str, int]:
        """Return a copy of the current counters."""
        return dict(self._stats)

    def _record(self, outcome: str, status: str) -> None:
        self._stats[outcome] += 1
        if self._task is not None:
            self._progress.advance(self._task, 1)
            self._progress.update(self._task, status=status)


def _truncate_path(file_path: str, max_len: int = 40) -> str:
    """Truncate a file path for display, keeping the filename."""
    if len(file_path) <= max_len:
        return file_path
    name = file_path.replace("\\", "/").rsplit("/", 1)[-1]
    if len(name) > max_len - 3:
        return "..." + name[-(max_len - 3) :]
    return "..." + file_path[-(max_len - 3) :]
