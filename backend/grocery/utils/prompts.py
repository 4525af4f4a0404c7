"""Prompt templates — plain ``.txt`` files next to the package, filled with ``str.format``.

Templates are read once per process and cached.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog

log = structlog.get_logger("prompts")

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"

_template_cache: dict[str, str] = {}


def load_prompt(name: str) -> str:
    """Return the raw template ``prompts/<name>.txt``.

    Raises:
        FileNotFoundError: If the template does not exist.
    """
    if name not in _template_cache:
        path = PROMPTS_DIR / f"{name}.txt"
        if not path.exists():
            raise FileNotFoundError(f"No prompt file found: {path}")
        _template_cache[name] = path.read_text(encoding="utf-8").strip()
        log.debug("prompt_template_loaded", name=name)
    return _template_cache[name]


def render_prompt(name: str, **values: Any) -> str:
    """Load ``name`` and fill its placeholders."""
    return load_prompt(name).format(**values)
