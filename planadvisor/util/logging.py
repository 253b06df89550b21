"""Contains utilities to conveniently log different information."""
from __future__ import annotations

import functools
import pprint
import sys
from collections.abc import Callable
from datetime import datetime
from typing import IO

Logger = Callable[..., None]
"""Type alias for the print-like loggers created by `make_logger`."""


def timestamp() -> str:
    """Provides the current time as a nice and normalized string."""
    return datetime.now().strftime("%y-%m-%d %H:%M:%S")


def make_logger(enabled: bool = True, *, file: IO[str] | None = None, pretty: bool = False,
                prefix: str | Callable[[], str] = "") -> Logger:
    """Creates a new logging utility.

    The generated method can be used like a regular `print`, but with defaults that are better suited for logging purposes.

    If `enabled` is `False`, calling the logging function will not actually print anything and simply return. This
    is especially useful to implement logging-hooks in longer functions without permanently re-checking whether logging
    is enabled or not.

    By default, all logging output will be written to stderr, but this can be customized by supplying a different
    `file`.

    Parameters
    ----------
    enabled : bool, optional
        Whether logging is enabled, by default *True*
    file : IO[str] | None, optional
        Destination to write the log entries to. Defaults to ``sys.stderr`` (resolved at call time)
    pretty : bool, optional
        Whether complex objects should be pretty-printed using the ``pprint`` module, by default *False*
    prefix : str | Callable[[], str], optional
        A common prefix that should be added before each log entry. Can be either a hard-coded string, or a callable that
        dynamically produces a string for each logging action separately (e.g. `timestamp`).

    Returns
    -------
    Logger
        A print-like function
    """
    def _log(*args, **kwargs) -> None:
        if prefix and isinstance(prefix, str):
            args = [prefix] + list(args)
        elif prefix:
            args = [prefix()] + list(args)
        print(*args, file=file if file is not None else sys.stderr, **kwargs)

    def _dummy_log(*args, **kwargs) -> None:
        pass

    if pretty and enabled:
        return functools.partial(pprint.pprint, stream=file if file is not None else sys.stderr)

    return _log if enabled else _dummy_log


def standard_logger(enabled: bool = True) -> Logger:
    """Creates a logger that writes timestamped entries to stderr."""
    return make_logger(enabled, prefix=timestamp)
