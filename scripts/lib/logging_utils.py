# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Logging setup for the routing reproduction harness.

:func:`setup_logging` configures the root logger once per run: a plain
timestamped format locally, GitHub Actions ``::warning::``/``::error::``
annotations in CI, and ``DEBUG`` environment variable support.  The
chatty third-party loggers used by the mock routers (uvicorn, httpx)
are kept at ``WARNING`` unless debug output was requested.

Usage::

    from logging_utils import log_group, setup_logging

    setup_logging()
    with log_group("Scenario: no-providers"):
        ...
"""

from __future__ import annotations

import logging
import os
import sys

_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Loggers that drown the harness output at INFO level
_NOISY_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "httpx", "httpcore")


class _GitHubActionsFormatter(logging.Formatter):
    """Prefix WARNING and above with a GitHub Actions workflow command."""

    _GH_LEVEL_MAP = {
        logging.WARNING: "warning",
        logging.ERROR: "error",
        logging.CRITICAL: "error",
    }

    def __init__(self) -> None:
        super().__init__(fmt=_FORMAT, datefmt=_DATEFMT)

    def format(self, record: logging.LogRecord) -> str:
        formatted = super().format(record)
        gh_level = self._GH_LEVEL_MAP.get(record.levelno)
        if gh_level:
            return f"::{gh_level}::{record.getMessage()}\n{formatted}"
        return formatted


def _in_github_actions() -> bool:
    return os.environ.get("GITHUB_ACTIONS") == "true"


def setup_logging(debug: bool | None = None) -> None:
    """Configure the root logger.

    Parameters
    ----------
    debug:
        *True* selects ``DEBUG``, *False* selects ``INFO``.  *None* reads
        the ``DEBUG`` environment variable (``"true"`` enables debug).

    Calling this more than once replaces the previously installed
    handler instead of stacking a second one.
    """
    if debug is None:
        debug = os.environ.get("DEBUG", "false").lower() == "true"

    handler = logging.StreamHandler(sys.stderr)
    if _in_github_actions():
        handler.setFormatter(_GitHubActionsFormatter())
    else:
        handler.setFormatter(logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT))

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.DEBUG if debug else logging.INFO)
    root.addHandler(handler)

    third_party_level = logging.DEBUG if debug else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(third_party_level)


def log_group(title: str) -> _LogGroup:
    """Return a context manager that groups log output under *title*.

    Inside GitHub Actions this emits ``::group::``/``::endgroup::`` so
    the section is collapsible; elsewhere it prints a banner.
    """
    return _LogGroup(title)


class _LogGroup:
    def __init__(self, title: str) -> None:
        self._title = title
        self._is_ci = _in_github_actions()

    def __enter__(self) -> None:
        if self._is_ci:
            print(f"::group::{self._title}", file=sys.stderr)
        else:
            print(f"\n{'=' * 60}", file=sys.stderr)
            print(f"  {self._title}", file=sys.stderr)
            print(f"{'=' * 60}", file=sys.stderr)

    def __exit__(self, *_args: object) -> None:
        if self._is_ci:
            print("::endgroup::", file=sys.stderr)
