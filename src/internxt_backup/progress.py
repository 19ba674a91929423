"""Progress reporting for upload and download batches."""

from typing import Optional, Protocol

from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskID, TextColumn, TimeRemainingColumn


class ProgressTracker(Protocol):
    """Interface the uploader and downloader drive while a batch runs."""

    def initialize(self, total: int) -> None: ...

    def start(self) -> None: ...

    def stop(self) -> None: ...

    def record_success(self) -> None: ...

    def record_failure(self) -> None: ...

    def display_summary(self) -> None: ...


class CountingProgressTracker:
    """Counts outcomes without rendering anything."""

    def __init__(self, operation: str = "Upload"):
        self.operation = operation
        self.total_files = 0
        self.completed_files = 0
        self.failed_files = 0

    def initialize(self, total: int) -> None:
        self.total_files = total
        self.completed_files = 0
        self.failed_files = 0

    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass

    def record_success(self) -> None:
        self.completed_files += 1

    def record_failure(self) -> None:
        self.failed_files += 1

    @property
    def percentage(self) -> int:
        processed = self.completed_files + self.failed_files
        return processed * 100 // self.total_files if self.total_files else 0

    @property
    def is_complete(self) -> bool:
        return self.total_files > 0 and self.completed_files + self.failed_files == self.total_files

    def display_summary(self) -> None:
        pass


NullProgressTracker = CountingProgressTracker


class RichProgressTracker(CountingProgressTracker):
    """Live progress bar plus a colored summary line."""

    def __init__(self, operation: str = "Upload", console: Optional[Console] = None):
        super().__init__(operation)
        self.console = console or Console()
        self._progress: Optional[Progress] = None
        self._task: Optional[TaskID] = None

    def start(self) -> None:
        if self._progress is not None or self.total_files == 0:
            return
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TextColumn("({task.completed}/{task.total})"),
            TimeRemainingColumn(),
            console=self.console,
            transient=True,
        )
        self._progress.start()
        self._task = self._progress.add_task(f"[cyan]{self.operation}ing files...", total=self.total_files)

    def stop(self) -> None:
        if self._progress is not None:
            self._progress.stop()
            self._progress = None
            self._task = None

    def _advance(self) -> None:
        if self._progress is not None and self._task is not None:
            self._progress.update(self._task, advance=1)

    def record_success(self) -> None:
        super().record_success()
        self._advance()

    def record_failure(self) -> None:
        super().record_failure()
        self._advance()

    def display_summary(self) -> None:
        self.stop()
        verb = f"{self.operation.lower()}ed"
        if self.total_files and not self.is_complete:
            self.console.print(
                f"[yellow]⚠[/yellow] {self.operation} stopped at {self.percentage}%: "
                f"{self.completed_files} succeeded, {self.failed_files} failed, "
                f"{self.total_files - self.completed_files - self.failed_files} not processed."
            )
        elif self.failed_files == 0:
            self.console.print(
                f"[green]✓[/green] {self.operation} completed successfully! "
                f"All {self.completed_files} files {verb}."
            )
        else:
            self.console.print(
                f"[yellow]⚠[/yellow] {self.operation} completed with issues: "
                f"{self.completed_files} succeeded, {self.failed_files} failed."
            )
