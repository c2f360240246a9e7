"""Activity logging and history mirroring for the coaching tools.

Each tool run is written twice: as a ``UserActivity`` plus a local history entry
in the in-memory store, and, when ``SUPABASE_URL`` is configured, as a row in the
matching remote table (``evaluate_history``, ``reverse_history``,
``verify_history``). Tab state follows the same pattern via ``tab_history``.
Remote failures are logged and never propagate to the request.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

import storage
from schemas import Evaluation, ReverseEngineering, UserActivity, Verification

LOGGER = logging.getLogger("thinkcoach.history")

ACTIVITY_TYPES = {
    "evaluate": "thinking_evaluation",
    "reverse": "reverse_engineering",
    "verify": "thinking_verification",
}
REMOTE_TABLES = {
    "evaluate": "evaluate_history",
    "reverse": "reverse_history",
    "verify": "verify_history",
}
TAB_TABLE = "tab_history"


def _excerpt(text: str, length: int = 30) -> str:
    return f"{(text or '')[:length]}..."


class RemoteHistoryStore:
    """Minimal PostgREST client for the hosted history tables."""

    def __init__(self, base_url: str, api_key: str, *, timeout: float = 5.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    @classmethod
    def from_env(cls) -> Optional["RemoteHistoryStore"]:
        url = os.getenv("SUPABASE_URL")
        key = os.getenv("SUPABASE_SERVICE_KEY") or os.getenv("SUPABASE_ANON_KEY")
        if not url or not key:
            return None
        try:
            timeout = float(os.getenv("SUPABASE_TIMEOUT", "") or 5.0)
        except ValueError:
            timeout = 5.0
        return cls(url, key, timeout=timeout)

    def _endpoint(self, table: str) -> str:
        return f"{self.base_url}/rest/v1/{table}"

    def _headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def insert(self, table: str, row: Dict[str, Any], *, upsert_on: Optional[str] = None) -> Optional[Dict[str, Any]]:
        prefer = "return=representation"
        params = None
        if upsert_on:
            prefer = f"resolution=merge-duplicates,{prefer}"
            params = {"on_conflict": upsert_on}
        try:
            response = requests.post(
                self._endpoint(table),
                json=row,
                params=params,
                headers=self._headers(prefer),
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as exc:
            LOGGER.error("Error saving %s: %s", table, exc)
            return None
        if isinstance(data, list):
            return data[0] if data else None
        return data if isinstance(data, dict) else None

    def select(
        self,
        table: str,
        *,
        filters: Optional[Dict[str, str]] = None,
        limit: int = 10,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"select": "*", "order": "created_at.desc", "limit": limit}
        for column, value in (filters or {}).items():
            params[column] = f"eq.{value}"
        try:
            response = requests.get(
                self._endpoint(table),
                params=params,
                headers=self._headers(),
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as exc:
            LOGGER.error("Error fetching %s: %s", table, exc)
            return []
        return [row for row in data if isinstance(row, dict)] if isinstance(data, list) else []


class HistoryRecorder:
    """Writes tool results to the local store and mirrors them remotely."""

    def __init__(self, remote: Optional[RemoteHistoryStore] = None) -> None:
        self.remote = remote

    @classmethod
    def from_env(cls) -> "HistoryRecorder":
        remote = RemoteHistoryStore.from_env()
        if remote is None:
            LOGGER.info("Remote history store not configured; keeping history in memory only")
        return cls(remote)

    # ---------- Tool results ----------

    def _record(
        self,
        kind: str,
        user_id: int,
        *,
        title: str,
        description: str,
        score: Optional[int],
        row: Dict[str, Any],
    ) -> UserActivity:
        store = storage.get_storage()
        activity = store.create_user_activity(
            {
                "user_id": user_id,
                "activity_type": ACTIVITY_TYPES[kind],
                "title": title,
                "description": description,
                "score": score,
                "skill_id": None,
                "exercise_id": None,
            }
        )
        store.add_history_entry(kind, user_id, row)
        if self.remote is not None:
            self.remote.insert(REMOTE_TABLES[kind], {**row, "user_id": str(user_id)})
        return activity

    def record_evaluation(
        self,
        user_id: int,
        *,
        problem_type: str,
        description: str,
        thinking_process: str,
        expected_outcome: str,
        result: Evaluation,
    ) -> UserActivity:
        return self._record(
            "evaluate",
            user_id,
            title=f"Evaluated {problem_type}: {_excerpt(description)}",
            description=description,
            score=result.score,
            row={
                "problem_type": problem_type,
                "description": description,
                "thinking_process": thinking_process,
                "expected_outcome": expected_outcome,
                "score": result.score,
                "feedback": result.feedback,
                "strengths": result.strengths,
                "weaknesses": result.weaknesses,
                "improvements": result.improvements,
            },
        )

    def record_reverse(
        self,
        user_id: int,
        *,
        problem_type: str,
        problem: str,
        solution: str,
        result: ReverseEngineering,
    ) -> UserActivity:
        return self._record(
            "reverse",
            user_id,
            title=f"Idea Journey {problem_type}: {_excerpt(problem)}",
            description=problem,
            score=None,
            row={
                "problem_type": problem_type,
                "problem": problem,
                "solution": solution,
                "process": [step.model_dump() for step in result.process],
                "principles": result.principles,
                "insights": result.insights,
            },
        )

    def record_verification(
        self,
        user_id: int,
        *,
        problem: str,
        thinking_process: str,
        conclusion: str,
        result: Verification,
    ) -> UserActivity:
        return self._record(
            "verify",
            user_id,
            title=f"Verified Thinking: {_excerpt(problem)}",
            description=problem,
            score=int(result.confidence * 100 + 0.5),
            row={
                "problem": problem,
                "thinking_process": thinking_process,
                "conclusion": conclusion,
                "is_valid": result.is_valid,
                "confidence": result.confidence,
                "gaps": result.gaps,
                "alternatives": result.alternatives,
            },
        )

    def list_history(self, kind: str, limit: int = 10) -> List[Dict[str, Any]]:
        if self.remote is not None:
            rows = self.remote.select(REMOTE_TABLES[kind], limit=limit)
            if rows:
                return rows
        return [
            {
                **entry.payload,
                "id": entry.id,
                "user_id": str(entry.user_id),
                "created_at": entry.created_at.isoformat(),
            }
            for entry in storage.get_storage().get_history_entries(kind, limit)
        ]

    # ---------- Tab state ----------

    def save_tab_state(self, tab_id: str, title: str, content: Any) -> Dict[str, Any]:
        state = storage.get_storage().save_tab_state(tab_id, title, content)
        row = {
            "tab_id": tab_id,
            "title": title,
            "content": content,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        if self.remote is not None:
            saved = self.remote.insert(TAB_TABLE, row, upsert_on="tab_id")
            if saved:
                return saved
        return {**row, "created_at": state.created_at.isoformat()}

    def get_tab_state(self, tab_id: str) -> Optional[Dict[str, Any]]:
        if self.remote is not None:
            rows = self.remote.select(TAB_TABLE, filters={"tab_id": tab_id}, limit=1)
            if rows:
                return rows[0]
        state = storage.get_storage().get_tab_state(tab_id)
        if state is None:
            return None
        return {
            "tab_id": state.tab_id,
            "title": state.title,
            "content": state.content,
            "created_at": state.created_at.isoformat(),
        }
