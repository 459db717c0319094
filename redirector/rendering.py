from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

from jinja2 import Template


@lru_cache(maxsize=None)
def _load_template(template_path: str) -> Template:
    text = Path(template_path).read_text(encoding="utf-8")
    return Template(text, autoescape=True)


def render_page(template_path: str, **context: Any) -> str:
    return _load_template(template_path).render(**context)
