"""
Contest endpoints: listings, details, administration and participation.
"""

from typing import Any, Dict, List, Optional

from dualguard.client import endpoints
from dualguard.client.api import build_query_params
from dualguard.shared.models import Contest, ContestParticipation, UserParticipation, Page


class ContestsAPI:

    def __init__(self, api_client):
        self.api_client = api_client

    async def get_all(self, params: Optional[Dict[str, Any]] = None) -> Page:
        data = await self.api_client.get(endpoints.CONTESTS, params=build_query_params(params))
        return Page.from_dict(data, Contest)

    async def get_paginated(self, params: Optional[Dict[str, Any]] = None) -> Page:
        """List contests page by page, optionally filtered by ``status``."""
        query = build_query_params(params, leading_keys=('page', 'limit', 'status'))
        data = await self.api_client.get(endpoints.CONTESTS_PAGINATED, params=query)
        return Page.from_dict(data, Contest)

    async def get_active_and_upcoming(self) -> List[Contest]:
        data = await self.api_client.get(endpoints.CONTESTS_ACTIVE_UPCOMING)
        return [Contest.from_dict(item) for item in data]

    async def get_by_id(self, contest_id: int) -> Contest:
        return Contest.from_dict(await self.api_client.get(endpoints.contest(contest_id)))

    async def create(self, payload: Dict[str, Any]) -> Contest:
        return Contest.from_dict(await self.api_client.post(endpoints.CONTESTS, payload))

    async def update(self, contest_id: int, payload: Dict[str, Any]) -> Contest:
        return Contest.from_dict(await self.api_client.patch(endpoints.contest(contest_id), payload))

    async def delete(self, contest_id: int) -> None:
        await self.api_client.delete(endpoints.contest(contest_id))

    async def join(self, contest_id: int) -> ContestParticipation:
        return ContestParticipation.from_dict(await self.api_client.post(endpoints.contest_join(contest_id)))

    async def leave(self, contest_id: int) -> None:
        await self.api_client.delete(endpoints.contest_leave(contest_id))

    async def get_participants(self, contest_id: int, params: Optional[Dict[str, Any]] = None) -> Page:
        query = build_query_params(params, include_filters=False)
        data = await self.api_client.get(endpoints.contest_participants(contest_id), params=query)
        return Page.from_dict(data, ContestParticipation)

    async def get_participation(self, contest_id: int) -> UserParticipation:
        """Whether the current user joined the contest, with their submitted issues."""
        return UserParticipation.from_dict(
            await self.api_client.get(endpoints.contest_participation(contest_id))
        )
