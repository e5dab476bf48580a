from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Progress display service with tqdm (TTY only).

- Single tqdm instance, disabled in non-TTY environments (CI, pipes)
- TTY detection using sys.stdout.isatty()
- File import: one tick per report file, postfix = running invoice counts
- Live sync: one tick per page (total unknown)
"""

__all__ = [
    "ProgressTracker",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    """Check if TTY output is enabled.

    Returns:
        True if stdout is a TTY and progress should be displayed, False otherwise
    """
    return sys.stdout.isatty()


class ProgressTracker:
    """Progress tracker using tqdm.

    In non-TTY environments progress bars are disabled to avoid ANSI control sequence
    spam; every method then becomes a no-op.
    """

    def __init__(
        self,
        total: int | None,
        *,
        description: str = "Processing files",
        unit: str = "file",
    ) -> None:
        """Initialize progress tracker.

        Args:
            total: Total number of units (None when unknown, e.g. sync pages)
            description: Description for the progress bar
            unit: tqdm unit label
        """
        self.total = total
        self.description = description
        self.current = 0

        self.enabled = is_tty_enabled()
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=total,
                desc=description,
                unit=unit,
                disable=False,
                leave=True,
                position=0,
                ncols=80,
                ascii=True,
            )
        else:
            self.pbar = None

    def start_file(self, file_path: Path) -> None:
        self.current += 1
        if self.enabled and self.pbar is not None:
            self.pbar.set_description(f"{self.description} ({file_path.name})")

    def finish_file(self, success: bool = True) -> None:
        self.advance()
        if self.enabled and self.pbar is not None:
            self.pbar.set_description(self.description)

    def advance(self, n: int = 1) -> None:
        if self.enabled and self.pbar is not None:
            self.pbar.update(n)

    def set_postfix(self, **kwargs: Any) -> None:
        """Set postfix information (stats) on the progress bar."""
        if self.enabled and self.pbar is not None:
            self.pbar.set_postfix(**kwargs)

    def close(self) -> None:
        if self.enabled and self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> ProgressTracker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
