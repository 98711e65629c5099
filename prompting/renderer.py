from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel

from common.config import RenderConfig, yaml_config
from graph.resolver import ResolvedDocument


class RenderOptions(BaseModel):
    separator: str = "\n"
    include_ids: bool = False  # prefix each unit with "[id] " for traceability
    indent: str = ""  # repeated once per level below the root
    skip_empty: bool = False

    @classmethod
    def from_config(cls, cfg: RenderConfig | None = None) -> "RenderOptions":
        cfg = cfg or yaml_config.render
        return cls(**cfg.model_dump())


def render_document(
    document: ResolvedDocument, options: Optional[RenderOptions] = None
) -> str:
    """
    Flatten a resolved document into prompt text, one unit per segment, in
    resolved order. No I/O; same input and options give the same output.
    """
    options = options or RenderOptions()
    parts: List[str] = []
    for unit in document.units():
        text = unit.text
        if options.skip_empty and not text.strip():
            continue
        if options.include_ids:
            text = f"[{unit.id}] {text}"
        if options.indent:
            text = options.indent * document.depth(unit.id) + text
        parts.append(text)
    return options.separator.join(parts)
