"""
carelog/api.py
─────────────────────────────────────────────────────────────────────────────
carelog — Dual-mode API layer

TWO USAGE MODES:
  1. Importable module:
         from carelog.api import CarelogAPI
         api = CarelogAPI(store_path=Path("carelog.db"))
         session = api.import_file(raw_bytes, "chat.txt")
         hits = api.get_messages(session["id"], search="費用")

  2. FastAPI HTTP server (local case-review UI via fetch()):
         python -m carelog.api                   # default: port 8766
         python -m carelog.api --port 9000
         uvicorn carelog.api:app --port 8766

ENDPOINTS:
  GET    /health                      — status + store path
  GET    /sessions                    — archived sessions, most recent first
  POST   /sessions                    — import raw transcript (.txt) or archive (.json)
  GET    /sessions/{id}               — full session document
  DELETE /sessions/{id}               — delete session
  GET    /sessions/{id}/messages      — messages, optional search / tag filter
  GET    /sessions/{id}/dates         — date navigator (date + message count)
  GET    /sessions/{id}/export        — archive file (JSON, integrity hash)
  POST   /sessions/{id}/analysis      — merge an externally produced analysis
  POST   /sessions/{id}/analyze       — run the local Ollama collaborator
  DELETE /sessions/{id}/analyze       — cancel an outstanding analysis

CORS: localhost-only. The server binds to 127.0.0.1 by default.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from fastapi import Body, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from carelog import __version__
from carelog.analysis.merge import MergeReport, merge_analysis
from carelog.analysis.runner import AnalysisRunner
from carelog.archive.codec import message_to_dict, session_to_dict
from carelog.archive.export import archive_file_name, export_archive
from carelog.archive.store import ArchiveStore
from carelog.errors import (
    AnalysisInProgress,
    CollaboratorError,
    FormatError,
    SchemaError,
    SessionNotFound,
)
from carelog.llm.base import AnalysisCollaborator
from carelog.models.record import ChatSession
from carelog.query.filters import filter_messages, group_by_date, tag_counts
from carelog.session_builder import build_from_upload
from carelog.storage.blob_store import BlobStore, open_blob_store

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# IMPORTABLE CLASS
# ═══════════════════════════════════════════════════════════════════════════

class CarelogAPI:
    """
    Pure-Python API around the archive store.
    No HTTP layer required; import and call directly.
    The store is opened lazily on first use.
    """

    def __init__(
        self,
        store_path:    Path = Path("carelog.db"),
        store_backend: str  = "sqlite",
        blob_store:    Optional[BlobStore] = None,
        collaborator:  Optional[AnalysisCollaborator] = None,
        sample_limit:  int  = 400,
        strict_merge:  bool = False,
    ):
        self.store_path    = Path(store_path)
        self.store_backend = store_backend
        self.sample_limit  = sample_limit
        self.strict_merge  = strict_merge
        self._blob_store   = blob_store
        self._collaborator = collaborator
        self._store: Optional[ArchiveStore]   = None
        self._runner: Optional[AnalysisRunner] = None
        # HTTP endpoints run in a threadpool; first use must build exactly one of each.
        self._init_lock = threading.RLock()

    # ── INTERNAL ──────────────────────────────────────────────────────────

    @property
    def store(self) -> ArchiveStore:
        if self._store is None:
            with self._init_lock:
                if self._store is None:
                    blob_store = self._blob_store or open_blob_store(self.store_backend, self.store_path)
                    store = ArchiveStore(blob_store)
                    store.load()
                    self._store = store
        return self._store

    @property
    def runner(self) -> AnalysisRunner:
        if self._runner is None:
            with self._init_lock:
                if self._runner is None:
                    if self._collaborator is None:
                        from carelog.llm.ollama_adapter import OllamaAdapter
                        self._collaborator = OllamaAdapter()
                    self._runner = AnalysisRunner(
                        self.store, self._collaborator,
                        sample_limit = self.sample_limit,
                        strict       = self.strict_merge,
                    )
        return self._runner

    @staticmethod
    def _summary(s: ChatSession) -> Dict[str, Any]:
        return {
            "id":           s.id,
            "fileName":     s.file_name,
            "timestamp":    s.timestamp,
            "fileHash":     s.file_hash,
            "fileSize":     s.file_size,
            "messageCount": len(s.messages),
            "participants": list(s.participants),
            "hasAnalysis":  s.analysis is not None,
            "tagCounts":    tag_counts(s.messages),
        }

    @staticmethod
    def _report_to_dict(report: MergeReport) -> Dict[str, Any]:
        return asdict(report)

    # ── SESSIONS ──────────────────────────────────────────────────────────

    def list_sessions(self) -> List[Dict[str, Any]]:
        return [self._summary(s) for s in self.store.sessions]

    def import_file(self, raw: bytes | str, file_name: str) -> Dict[str, Any]:
        """Import a .txt transcript or a .json archive; replace-and-promote on id match."""
        session = build_from_upload(raw, file_name)
        self.store.insert(session)
        return self._summary(session)

    def get_session(self, session_id: str) -> Dict[str, Any]:
        return session_to_dict(self.store.get(session_id))

    def delete_session(self, session_id: str) -> None:
        self.store.delete(session_id)

    # ── QUERY ─────────────────────────────────────────────────────────────

    def get_messages(
        self,
        session_id: str,
        search:     Optional[str] = None,
        tag:        Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        session = self.store.get(session_id)
        return [message_to_dict(m) for m in filter_messages(session.messages, search, tag)]

    def get_dates(self, session_id: str) -> List[Dict[str, Any]]:
        session = self.store.get(session_id)
        return [
            {"date": date, "count": len(msgs)}
            for date, msgs in group_by_date(session.messages).items()
        ]

    # ── EXPORT ────────────────────────────────────────────────────────────

    def export_session(self, session_id: str) -> Dict[str, str]:
        session = self.store.get(session_id)
        return {"fileName": archive_file_name(session), "content": export_archive(session)}

    # ── ANALYSIS ──────────────────────────────────────────────────────────

    def merge_analysis(
        self,
        session_id: str,
        payload:    Any,
        strict:     Optional[bool] = None,
    ) -> Dict[str, Any]:
        report = merge_analysis(
            self.store, session_id, payload,
            strict=self.strict_merge if strict is None else strict,
        )
        return self._report_to_dict(report)

    async def run_analysis(self, session_id: str) -> Dict[str, Any]:
        report = await self.runner.run(session_id)
        return self._report_to_dict(report)

    def cancel_analysis(self, session_id: str) -> bool:
        return self.runner.cancel(session_id)


# ═══════════════════════════════════════════════════════════════════════════
# FASTAPI HTTP APP
# ═══════════════════════════════════════════════════════════════════════════

class ImportRequest(BaseModel):
    file_name: str
    content:   str


class AnalysisRequest(BaseModel):
    payload: Dict[str, Any]
    strict:  Optional[bool] = None


def _build_app(api: Optional[CarelogAPI] = None) -> FastAPI:
    """Build the FastAPI application around a CarelogAPI instance."""
    _api = api or CarelogAPI()

    _app = FastAPI(
        title       = "carelog API",
        description = "Long-term-care chat transcript evidence archive — local API",
        version     = __version__,
        docs_url    = "/docs",
        redoc_url   = None,
    )

    _app.add_middleware(
        CORSMiddleware,
        allow_origins     = [
            "http://localhost",
            "http://localhost:8766",
            "http://127.0.0.1",
            "http://127.0.0.1:8766",
            "null",   # file:// origin
        ],
        allow_methods     = ["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers     = ["Content-Type"],
        allow_credentials = False,
    )

    def _not_found(exc: SessionNotFound) -> HTTPException:
        return HTTPException(status_code=404, detail=str(exc))

    @_app.get("/health", summary="Health check")
    def health():
        return {
            "status":     "ok",
            "store_path": str(_api.store_path),
            "version":    __version__,
        }

    @_app.get("/sessions", summary="List archived sessions")
    def list_sessions():
        data = _api.list_sessions()
        return {"count": len(data), "sessions": data}

    @_app.post("/sessions", summary="Import transcript or archive", status_code=201)
    def import_session(req: ImportRequest):
        try:
            return _api.import_file(req.content, req.file_name)
        except (FormatError, SchemaError) as exc:
            raise HTTPException(status_code=400, detail=str(exc))

    @_app.get("/sessions/{session_id}", summary="Full session document")
    def get_session(session_id: str):
        try:
            return _api.get_session(session_id)
        except SessionNotFound as exc:
            raise _not_found(exc)

    @_app.delete("/sessions/{session_id}", summary="Delete session")
    def delete_session(session_id: str):
        try:
            _api.delete_session(session_id)
        except SessionNotFound as exc:
            raise _not_found(exc)
        return {"status": "deleted", "id": session_id}

    @_app.get("/sessions/{session_id}/messages", summary="Filtered messages")
    def get_messages(
        session_id: str,
        search: Optional[str] = Query(None, description="Substring of content or sender"),
        tag:    Optional[str] = Query(None, description="payment, service, schedule, issue"),
    ):
        try:
            data = _api.get_messages(session_id, search=search, tag=tag)
        except SessionNotFound as exc:
            raise _not_found(exc)
        return {"count": len(data), "messages": data}

    @_app.get("/sessions/{session_id}/dates", summary="Date navigator")
    def get_dates(session_id: str):
        try:
            return {"dates": _api.get_dates(session_id)}
        except SessionNotFound as exc:
            raise _not_found(exc)

    @_app.get("/sessions/{session_id}/export", summary="Export archive file")
    def export_session(session_id: str):
        try:
            exported = _api.export_session(session_id)
        except SessionNotFound as exc:
            raise _not_found(exc)
        return JSONResponse(
            content = exported,
            headers = {"Content-Disposition": f"attachment; filename*=UTF-8''{quote(exported['fileName'])}"},
        )

    @_app.post("/sessions/{session_id}/analysis", summary="Merge external analysis")
    def merge_session_analysis(session_id: str, req: AnalysisRequest = Body(...)):
        try:
            return _api.merge_analysis(session_id, req.payload, strict=req.strict)
        except SessionNotFound as exc:
            raise _not_found(exc)
        except SchemaError as exc:
            raise HTTPException(status_code=400, detail=str(exc))

    @_app.post("/sessions/{session_id}/analyze", summary="Run local analysis collaborator")
    async def analyze_session(session_id: str):
        try:
            return await _api.run_analysis(session_id)
        except SessionNotFound as exc:
            raise _not_found(exc)
        except AnalysisInProgress as exc:
            raise HTTPException(status_code=409, detail=str(exc))
        except SchemaError as exc:
            raise HTTPException(status_code=502, detail=f"Collaborator payload rejected: {exc}")
        except CollaboratorError as exc:
            raise HTTPException(status_code=502, detail=str(exc))

    @_app.delete("/sessions/{session_id}/analyze", summary="Cancel running analysis")
    def cancel_analysis(session_id: str):
        return {"cancelled": _api.cancel_analysis(session_id)}

    return _app


# Module-level app instance for uvicorn carelog.api:app
app = _build_app()


# ═══════════════════════════════════════════════════════════════════════════
# CLI ENTRYPOINT — python -m carelog.api
# ═══════════════════════════════════════════════════════════════════════════

if __name__ == "__main__":
    import argparse

    import uvicorn

    from carelog.config import load_config, resolve_store_path

    parser = argparse.ArgumentParser(
        prog        = "carelog.api",
        description = "carelog API server — serves the local case-review UI",
    )
    parser.add_argument("--port", type=int, default=8766,
                        help="Port to bind (default: 8766)")
    parser.add_argument("--host", type=str, default="127.0.0.1",
                        help="Host to bind — DO NOT change to 0.0.0.0 on shared networks")
    args = parser.parse_args()

    logging.basicConfig(
        level   = logging.INFO,
        format  = '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt = '%H:%M:%S',
    )

    cfg = load_config()
    from carelog.llm.ollama_adapter import OllamaAdapter
    server_api = CarelogAPI(
        store_path    = resolve_store_path(cfg),
        store_backend = cfg["store_backend"],
        collaborator  = OllamaAdapter(
            model       = cfg["model"],
            host        = cfg["ollama_host"],
            timeout_sec = cfg["timeout_sec"],
        ),
        sample_limit  = cfg["sample_limit"],
        strict_merge  = cfg["strict_merge"],
    )

    uvicorn.run(
        _build_app(server_api),
        host      = args.host,
        port      = args.port,
        log_level = "info",
    )
