"""
User endpoints: directory, profiles and the current user's profile.
"""

from typing import Any, Dict, Optional

from dualguard.client import endpoints
from dualguard.client.api import build_query_params
from dualguard.shared.models import User, Page


class UsersAPI:

    def __init__(self, api_client):
        self.api_client = api_client

    async def get_all(self, params: Optional[Dict[str, Any]] = None) -> Page:
        data = await self.api_client.get(endpoints.USERS, params=build_query_params(params))
        return Page.from_dict(data, User)

    async def get_by_id(self, user_id: int) -> User:
        return User.from_dict(await self.api_client.get(endpoints.user(user_id)))

    async def get_profile(self) -> User:
        return User.from_dict(await self.api_client.get(endpoints.USERS_PROFILE))

    async def update_profile(self, payload: Dict[str, Any]) -> User:
        return User.from_dict(await self.api_client.patch(endpoints.USERS_PROFILE, payload))

    async def create(self, payload: Dict[str, Any]) -> User:
        """Create an account directly. Admin only."""
        return User.from_dict(await self.api_client.post(endpoints.USERS, payload))
