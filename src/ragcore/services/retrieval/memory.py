from __future__ import annotations

from dataclasses import dataclass, field, replace


@dataclass(frozen=True)
class SessionState:
    ref_ids: list[str] = field(default_factory=list)
    synopsis: str = ""


class SessionMemory:
    """Per-session scratch state; lives as long as the engine that owns it."""

    def __init__(self) -> None:
        self._sessions: dict[str, SessionState] = {}

    def get(self, session_id: str | None) -> SessionState:
        if not session_id:
            return SessionState()
        return self._sessions.get(session_id, SessionState())

    def remember(
        self,
        session_id: str | None,
        *,
        ref_ids: list[str] | None = None,
        synopsis: str | None = None,
    ) -> None:
        if not session_id:
            return
        current = self._sessions.get(session_id, SessionState())
        if ref_ids is not None:
            current = replace(current, ref_ids=list(ref_ids))
        if synopsis is not None:
            current = replace(current, synopsis=synopsis)
        self._sessions[session_id] = current

    def clear(self, session_id: str | None) -> None:
        if session_id:
            self._sessions.pop(session_id, None)

    def clear_all(self) -> None:
        self._sessions.clear()
