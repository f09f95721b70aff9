"""Prompt text files shipped next to this module, with ``{KEY}`` rendering."""

from __future__ import annotations

from collections.abc import Mapping
from functools import lru_cache
from pathlib import Path

from calls.errors import ConfigurationMissing

PROMPT_DIR = Path(__file__).resolve().parent


class _KeepMissing(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


@lru_cache(maxsize=None)
def load_prompt(filename: str) -> str:
    path = PROMPT_DIR / filename
    if not path.is_file():
        raise ConfigurationMissing(f"Prompt file not found: {filename}")
    return path.read_text(encoding="utf-8").strip() + "\n"


def render_template(template: str, values: Mapping[str, str]) -> str:
    """Substitute ``{KEY}`` placeholders; unknown keys are left as written."""

    return template.format_map(_KeepMissing(values))


def render_prompt(filename: str, values: Mapping[str, str]) -> str:
    return render_template(load_prompt(filename), values)
