"""YAML frontmatter extraction and title/summary resolution."""

from __future__ import annotations

from datetime import date, datetime
from pathlib import PurePosixPath
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict

from lorevault_core.chunking import find_headings, frontmatter_end, split_lines
from lorevault_core.errors import RequestValidationError

DEFAULT_DOC_TYPE = "doc"
MAX_SUMMARY_CHARS = 500


class ParsedDocument(BaseModel):
    """A markdown document split into its frontmatter mapping and body."""

    model_config = ConfigDict(frozen=True)

    frontmatter: dict[str, Any]
    body: str
    title: str
    summary: str | None
    doc_type: str


def parse_document(content: str, relative_path: str) -> ParsedDocument:
    """Parse a leading ``---`` YAML block and resolve title, summary and doc type.

    Title comes from the ``title`` key, else the first heading, else the file stem.
    Raises RequestValidationError when the block is malformed or not a mapping.
    """
    lines = split_lines(content)
    end = frontmatter_end(lines)
    frontmatter: dict[str, Any] = {}
    if end:
        raw = "\n".join(lines[1 : end - 1])
        try:
            loaded = yaml.safe_load(raw) if raw.strip() else {}
        except yaml.YAMLError as exc:
            raise RequestValidationError(
                "Malformed frontmatter", details={"path": relative_path, "error": str(exc)}
            ) from exc
        if not isinstance(loaded, dict):
            raise RequestValidationError(
                "Frontmatter must be a mapping", details={"path": relative_path}
            )
        frontmatter = {str(k): _jsonable(v) for k, v in loaded.items()}

    body_lines = lines[end:]
    title = _resolve_title(frontmatter, body_lines, relative_path)
    summary = frontmatter.get("summary")
    if summary is not None:
        summary = str(summary)[:MAX_SUMMARY_CHARS]
    doc_type = str(frontmatter.get("doc_type") or DEFAULT_DOC_TYPE).strip().lower()

    return ParsedDocument(
        frontmatter=frontmatter,
        body="\n".join(body_lines),
        title=title,
        summary=summary,
        doc_type=doc_type,
    )


def _jsonable(value: Any) -> Any:
    """Coerce YAML scalars (dates, timestamps) into JSON-compatible values."""
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, list | tuple | set):
        return [_jsonable(v) for v in value]
    if isinstance(value, date | datetime):
        return value.isoformat()
    return value


def _resolve_title(frontmatter: dict[str, Any], body_lines: list[str], relative_path: str) -> str:
    title = frontmatter.get("title")
    if isinstance(title, str) and title.strip():
        return title.strip()
    for heading in find_headings(body_lines):
        if heading.title:
            return heading.title
    return PurePosixPath(relative_path).stem
