"""Utility helpers for the gh runner."""

from __future__ import annotations

import os
from typing import Mapping

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
}

# gh must never block on a pager or an interactive prompt.
_NON_INTERACTIVE = {
    "GH_PAGER": "",
    "GH_PROMPT_DISABLED": "1",
    "NO_COLOR": "1",
}


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return a sanitized, non-interactive environment for subprocess execution."""

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    env.update(_NON_INTERACTIVE)
    if additional:
        env.update(additional)
    return env
