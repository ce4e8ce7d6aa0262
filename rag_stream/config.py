"""Environment configuration for the answer-session client."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

_log = logging.getLogger("rag_stream")

# Load .env from project root (parent of rag_stream/)
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

RAG_API_URL = os.getenv("RAG_API_URL", "http://127.0.0.1:8080")
RAG_READ_API_KEY = os.getenv("RAG_READ_API_KEY", "")
RAG_COLLECTION_ID = os.getenv("RAG_COLLECTION_ID", "")
RAG_AUTH_JWT_URL = os.getenv("RAG_AUTH_JWT_URL", "")
RAG_PRIVATE_API_KEY = os.getenv("RAG_PRIVATE_API_KEY", "")
RAG_TIMEOUT = float(os.getenv("RAG_TIMEOUT", "300"))
RAG_VISITOR_FILE = os.getenv("RAG_VISITOR_FILE", "")
RAG_DEFAULT_VISITOR_ID = os.getenv("RAG_DEFAULT_VISITOR_ID", "server-side-user")

_log.debug(
    "[CONFIG] api=%s collection=%s timeout=%s visitor_file=%s read_key=%s private_key=%s",
    RAG_API_URL,
    RAG_COLLECTION_ID or "(unset)",
    RAG_TIMEOUT,
    RAG_VISITOR_FILE or "(none)",
    "SET" if RAG_READ_API_KEY else "MISSING",
    "SET" if RAG_PRIVATE_API_KEY else "MISSING",
)
