from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterable, Iterator, TypeVar

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
)


T = TypeVar("T")


@dataclass(slots=True)
class ProgressTaskHandle:
    task_id: TaskID
    total: int


class RemoteProgressUI:
    """Progress bar for sequences of remote round trips (one step per entry)."""

    def __init__(self, console: Console | None = None, *, transient: bool = True) -> None:
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeRemainingColumn(),
            TextColumn("{task.fields[path]}"),
            console=console,
            transient=transient,
            expand=True,
        )

    def __enter__(self) -> "RemoteProgressUI":
        self._progress.__enter__()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._progress.__exit__(exc_type, exc, tb)

    def add_task(self, description: str, total: int) -> ProgressTaskHandle:
        task_id = self._progress.add_task(description, total=total, path="")
        return ProgressTaskHandle(task_id=task_id, total=total)

    def step(self, handle: ProgressTaskHandle, path: str = "") -> None:
        self._progress.update(handle.task_id, advance=1, path=path)


def track_remote(
    items: Iterable[T],
    *,
    total: int,
    description: str,
    console: Console | None = None,
) -> Iterator[T]:
    with RemoteProgressUI(console) as ui:
        handle = ui.add_task(description, total)
        for item in items:
            yield item
            ui.step(handle, path=str(item))


@contextmanager
def waiting_spinner(message: str, console: Console | None = None):
    """Spinner shown while a blocking remote call runs."""
    if console is None:
        yield
        return
    with console.status(message):
        yield
