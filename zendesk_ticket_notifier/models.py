from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional


@dataclass(frozen=True)
class CustomStatus:
    id: int
    agent_label: str

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "CustomStatus":
        return cls(id=int(payload["id"]), agent_label=str(payload.get("agent_label") or ""))


@dataclass(frozen=True)
class Group:
    id: int
    name: str

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Group":
        return cls(id=int(payload["id"]), name=str(payload.get("name") or ""))


@dataclass(frozen=True)
class TicketSearchResult:
    id: int
    subject: str
    custom_status_id: Optional[int] = None
    status: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "TicketSearchResult":
        status_id = payload.get("custom_status_id")
        return cls(
            id=int(payload["id"]),
            subject=str(payload.get("subject") or ""),
            custom_status_id=int(status_id) if status_id is not None else None,
            status=payload.get("status"),
        )
