"""
Shared plumbing for the resolution components.
"""

from typing import Callable, Optional


class Component:
    """Base for components that report progress.

    Attributes:
        verbose: Print progress messages to stdout
        progress_callback: Receives every progress message (GUI/automation hook)
    """

    def __init__(
        self,
        verbose: bool = False,
        progress_callback: Optional[Callable[[str], None]] = None
    ):
        self.verbose = verbose
        self.progress_callback = progress_callback

    def _log(self, message: str) -> None:
        """Log a message to console and/or callback."""
        if self.verbose:
            print(message)
        if self.progress_callback:
            self.progress_callback(message)
