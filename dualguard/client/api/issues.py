"""
Issue endpoints: findings, their comments and escalations.
"""

import logging
from typing import Any, Dict, Optional

from dualguard.client import endpoints
from dualguard.client.api import build_query_params
from dualguard.shared.exceptions import ApiError
from dualguard.shared.models import Issue, IssueComment, IssueEscalationComment, Page

logger = logging.getLogger(__name__)


class IssuesAPI:

    def __init__(self, api_client):
        self.api_client = api_client

    async def get_all(self, params: Optional[Dict[str, Any]] = None) -> Page:
        data = await self.api_client.get(endpoints.ISSUES, params=build_query_params(params))
        return Page.from_dict(data, Issue)

    async def get_by_contest(self, contest_id: int, params: Optional[Dict[str, Any]] = None) -> Page:
        data = await self.api_client.get(
            endpoints.contest_issues(contest_id),
            params=build_query_params(params)
        )
        return Page.from_dict(data, Issue)

    async def get_by_id(self, issue_id: int) -> Issue:
        return Issue.from_dict(await self.api_client.get(endpoints.issue(issue_id)))

    async def create(self, payload: Dict[str, Any]) -> Issue:
        return Issue.from_dict(await self.api_client.post(endpoints.ISSUES, payload))

    async def update(self, issue_id: int, payload: Dict[str, Any]) -> Issue:
        return Issue.from_dict(await self.api_client.patch(endpoints.issue(issue_id), payload))

    async def delete(self, issue_id: int) -> None:
        await self.api_client.delete(endpoints.issue(issue_id))

    async def get_comments(self, issue_id: int, params: Optional[Dict[str, Any]] = None) -> Page:
        query = build_query_params(params, include_filters=False)
        data = await self.api_client.get(endpoints.issue_comments(issue_id), params=query)
        return Page.from_dict(data, IssueComment)

    async def create_comment(self, issue_id: int, payload: Dict[str, Any]) -> IssueComment:
        return IssueComment.from_dict(await self.api_client.post(endpoints.issue_comments(issue_id), payload))

    async def get_escalation(self, issue_id: int) -> Optional[IssueEscalationComment]:
        """
        Fetch the escalation thread of an issue.

        Returns:
            The escalation, or None if the issue was never escalated

        Raises:
            ApiError: For any failure other than 404
        """
        try:
            data = await self.api_client.get(endpoints.issue_escalation(issue_id))
        except ApiError as e:
            if e.status == 404:
                logger.debug(f"Issue {issue_id} has no escalation")
                return None
            raise
        return IssueEscalationComment.from_dict(data)

    async def create_escalation(self, issue_id: int, payload: Dict[str, Any]) -> IssueEscalationComment:
        """Open an escalation as the submitting auditor."""
        return IssueEscalationComment.from_dict(
            await self.api_client.post(endpoints.issue_escalation(issue_id), payload)
        )

    async def update_escalation(self, issue_id: int, payload: Dict[str, Any]) -> IssueEscalationComment:
        """Answer an escalation as the judge."""
        return IssueEscalationComment.from_dict(
            await self.api_client.patch(endpoints.issue_escalation(issue_id), payload)
        )
