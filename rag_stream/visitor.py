"""Visitor and interaction id helpers."""

from __future__ import annotations

import logging
import sys
import uuid
from pathlib import Path

from rag_stream.config import RAG_DEFAULT_VISITOR_ID, RAG_VISITOR_FILE

_log = logging.getLogger("rag_stream")


def create_id() -> str:
    return uuid.uuid4().hex


def get_visitor_id(store_path: str | Path | None = None, interactive: bool | None = None) -> str:
    """Return the stable visitor id for this device.

    With a store file the id is read from it, or generated and written there
    on first use. Without one, non-interactive processes share the fixed
    fallback id and interactive ones get a fresh id.
    """
    path = store_path if store_path is not None else (RAG_VISITOR_FILE or None)
    if path is not None:
        path = Path(path).expanduser()
        try:
            stored = path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            stored = ""
        except OSError as e:
            _log.debug("Cannot read visitor id from %s: %s", path, e)
            stored = ""
        if stored:
            return stored
        visitor_id = create_id()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(visitor_id, encoding="utf-8")
        except OSError as e:
            _log.debug("Cannot persist visitor id to %s: %s", path, e)
        return visitor_id

    if interactive is None:
        interactive = sys.stdin is not None and sys.stdin.isatty()
    if not interactive:
        return RAG_DEFAULT_VISITOR_ID
    return create_id()
