"""Rich progress display for batch uploads.

Two tiers:

* **Batch level** -- files finished out of the batch total
* **Status text** -- current file name and its upload stage
"""

from __future__ import annotations

from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

from walsync.upload.records import UploadRecord


class UploadProgressTracker:
    """Rich progress tracker for ``UploadCoordinator.upload_many``.

    Usage::

        with UploadProgressTracker(total_files=12) as tracker:
            coordinator = UploadCoordinator(..., progress=tracker)
            await coordinator.upload_many(paths, options)
    """

    def __init__(self, total_files: int, progress: Progress | None = None) -> None:
        self._total_files = total_files
        self._progress = progress or Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            TextColumn("{task.fields[status]}", style="dim"),
        )
        self._task: TaskID | None = None
        self._stats: dict[str, int] = {"succeeded": 0, "skipped": 0, "failed": 0}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self._progress.start()
        self._task = self._progress.add_task(
            "[green]Walrus", total=self._total_files, status="starting..."
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
    # File-level events
    # ------------------------------------------------------------------

    def file_started(self, file_path: str) -> None:
        self._update(_truncate_path(file_path))

    def stage_changed(self, record: UploadRecord) -> None:
        self._update(f"{_truncate_path(record.source_path)} [{record.stage.value}]")

    def file_succeeded(self, file_path: str) -> None:
        self._finish("succeeded", _truncate_path(file_path))

    def file_skipped(self, file_path: str) -> None:
        self._finish("skipped", f"[yellow]SKIP[/yellow] {_truncate_path(file_path)}")

    def file_failed(self, file_path: str, error: str) -> None:
        self._finish("failed", f"[red]FAIL[/red] {_truncate_path(file_path)}")

    @property
    def stats(self) -> dict[str, int]:
        """Return a copy of the current statistics."""
        return dict(self._stats)

    def _finish(self, outcome: str, status: str) -> None:
        self._stats[outcome] += 1
        if self._task is not None:
            self._progress.advance(self._task, 1)
        self._update(status)

    def _update(self, status: str) -> None:
        if self._task is not None:
            self._progress.update(self._task, status=status)


def _truncate_path(file_path: str, max_len: int = 40) -> str:
    """Truncate a file path for display, keeping the filename."""
    if len(file_path) <= max_len:
        return file_path
    name = file_path.rsplit("/", 1)[-1]
    if len(name) > max_len - 3:
        return "..." + name[-(max_len - 3) :]
    return "..." + file_path[-(max_len - 3) :]
