from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

from .models import CustomStatus, Group, TicketSearchResult

logger = logging.getLogger(__name__)


class RemoteClient(Protocol):
    async def fetch_custom_statuses(self) -> List[CustomStatus]: ...

    async def fetch_groups(self) -> List[Group]: ...

    async def search_tickets(self, query: str) -> List[TicketSearchResult]: ...


@dataclass(frozen=True)
class ResolvedCriteria:
    status_ids: List[int]
    group_id: Optional[int]


def match_statuses(statuses: Sequence[CustomStatus], labels: Sequence[str]) -> List[CustomStatus]:
    wanted = {label.strip().lower() for label in labels if label and label.strip()}
    if not wanted:
        return []
    return [status for status in statuses if status.agent_label.strip().lower() in wanted]


def match_group(groups: Sequence[Group], target: str) -> Optional[Group]:
    needle = (target or "").strip().lower()
    if not needle:
        return None

    tiers = (
        lambda name: name == needle,
        lambda name: name.startswith(needle),
        lambda name: needle in name,
    )
    for matches in tiers:
        for group in groups:
            if matches(group.name.strip().lower()):
                return group
    return None


async def resolve_status_ids(client: RemoteClient, labels: Sequence[str]) -> List[int]:
    if not labels:
        return []

    statuses = await client.fetch_custom_statuses()
    matched = match_statuses(statuses, labels)
    if not matched:
        logger.warning(
            "status_resolve_no_match labels=%s available=%s",
            ",".join(labels),
            len(statuses),
        )
        return []

    logger.info(
        "status_resolved matches=%s",
        ",".join(f"{status.id}:{status.agent_label}" for status in matched),
    )
    return [status.id for status in matched]


async def resolve_group_id(client: RemoteClient, target: str) -> Optional[int]:
    if not (target or "").strip():
        return None

    groups = await client.fetch_groups()
    group = match_group(groups, target)
    if group is None:
        logger.warning("group_resolve_no_match target=%s available=%s", target, len(groups))
        return None

    logger.info("group_resolved target=%s id=%s name=%s", target, group.id, group.name)
    return group.id


async def resolve_criteria(
    client: RemoteClient,
    *,
    status_labels: Sequence[str],
    group_target: str,
) -> ResolvedCriteria:
    status_ids, group_id = await asyncio.gather(
        resolve_status_ids(client, status_labels),
        resolve_group_id(client, group_target),
    )
    return ResolvedCriteria(status_ids=list(status_ids), group_id=group_id)
