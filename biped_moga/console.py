"""Shared rich console used for run logging."""

from contextlib import contextmanager

from rich.console import Console

console = Console(highlight=False)


def set_verbose(verbose: bool) -> None:
    console.quiet = not verbose


@contextmanager
def verbosity(verbose: bool):
    """Apply ``verbose`` for the duration of a block, then restore the previous setting."""
    previous = console.quiet
    console.quiet = not verbose
    try:
        yield console
    finally:
        console.quiet = previous
