"""
Tests for the resource wrappers: auth, contests, issues and users.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from conftest import json_response
from dualguard.client.api import build_query_params
from dualguard.client.api.auth import AuthAPI
from dualguard.client.api.contests import ContestsAPI
from dualguard.client.api.issues import IssuesAPI
from dualguard.client.api.users import UsersAPI
from dualguard.shared.exceptions import ApiError
from dualguard.shared.models import ContestStatus, Severity, IssueStatus, UserRole

USER = {
    'id': 7,
    'username': 'alice',
    'email': 'alice@example.com',
    'role': 'AUDITOR',
    'score': '1520.5',
    'isEmailVerified': True,
    'createdAt': '2025-01-05T10:00:00.000Z',
}

CONTEST = {
    'id': 12,
    'title': 'Lending Protocol v2',
    'status': 'ACTIVE',
    'startDate': '2025-02-01T00:00:00.000Z',
    'endDate': '2025-02-21T00:00:00.000Z',
    'totalPrizePool': '150000',
    'tags': ['DeFi'],
}

ISSUE = {
    'id': 123,
    'contestId': 12,
    'title': 'Reentrancy in withdraw()',
    'severity': 'high',
    'status': 'SUBMITTED',
    'submittedBy': 7,
}


def paginated(items, page=1, total_pages=1):
    return {
        'data': items,
        'pagination': {'page': page, 'limit': 20, 'total': len(items), 'totalPages': total_pages},
    }


class TestAuthAPI:

    @pytest.mark.asyncio
    async def test_login_then_current_user(self, client, store, backend, signals):
        backend.add('POST', '/auth/login', json_response(200, {'accessToken': 'acc', 'refreshToken': 'ref'}))
        backend.add('GET', '/auth/me', json_response(200, USER))
        auth = AuthAPI(client)

        tokens = await auth.login('alice@example.com', 'hunter2')

        assert tokens.access_token == 'acc'
        assert client.has_credentials()
        assert backend.last('POST', '/auth/login').body == {'email': 'alice@example.com', 'password': 'hunter2'}

        user = await auth.get_current_user()

        assert user.username == 'alice'
        assert backend.last('GET', '/auth/me').headers['Authorization'] == 'Bearer acc'
        assert backend.count('POST', '/auth/refresh') == 0
        assert signals.errors == []

    @pytest.mark.asyncio
    async def test_login_without_body_tokens(self, client, store, backend):
        backend.add('POST', '/auth/login', json_response(200, {'success': True}))

        assert await AuthAPI(client).login('alice@example.com', 'pw') is None
        assert not store.has_credentials()

    @pytest.mark.asyncio
    async def test_failed_login_stores_nothing(self, client, store, backend, signals):
        backend.add('POST', '/auth/login', json_response(401, {'message': 'Invalid credentials'}))

        with pytest.raises(ApiError):
            await AuthAPI(client).login('alice@example.com', 'wrong')

        assert not store.has_credentials()
        assert backend.count('POST', '/auth/refresh') == 0
        assert signals.signouts == []

    @pytest.mark.asyncio
    async def test_signed_out_caller_never_requests_current_user(self, client, backend):
        auth = AuthAPI(client)

        if client.has_credentials():
            await auth.get_current_user()

        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_logout_clears_even_when_request_fails(self, client, store, backend, signals):
        store.write('a', 'r')
        backend.add('POST', '/auth/logout', json_response(500, {'message': 'boom'}))

        await AuthAPI(client).logout()

        assert not store.has_credentials()
        assert signals.signouts == [{'reason': 'logout'}]

    @pytest.mark.asyncio
    async def test_logout_all(self, client, store, backend, signals):
        store.write('a', 'r')
        backend.add('POST', '/auth/logout-all', json_response(200, {'success': True}))

        await AuthAPI(client).logout_all()

        assert backend.last('POST', '/auth/logout-all').headers['Authorization'] == 'Bearer a'
        assert not store.has_credentials()
        assert signals.signouts == [{'reason': 'logout_all'}]

    @pytest.mark.asyncio
    async def test_verify_email_stores_returned_tokens(self, client, store, backend):
        backend.add('POST', '/auth/verify-email', json_response(200, {
            'success': True, 'message': 'Verified', 'accessToken': 'a', 'refreshToken': 'r'
        }))

        response = await AuthAPI(client).verify_email('mail-token')

        assert response['message'] == 'Verified'
        assert backend.last('POST', '/auth/verify-email').body == {'token': 'mail-token'}
        assert store.read_access().value == 'a'

    @pytest.mark.asyncio
    async def test_sign_up_and_resend_skip_auth(self, client, store, backend):
        store.write('a', 'r')
        backend.add('POST', '/auth/signup', json_response(201, {'success': True, 'message': 'Check your email'}))
        backend.add('POST', '/auth/resend-verification', json_response(200, {'success': True}))
        auth = AuthAPI(client)

        await auth.sign_up('alice', 'alice@example.com', 'pw')
        await auth.resend_verification_email('alice@example.com')

        assert 'Authorization' not in backend.last('POST', '/auth/signup').headers
        assert backend.last('POST', '/auth/resend-verification').body == {'email': 'alice@example.com'}

    @pytest.mark.asyncio
    async def test_explicit_refresh_token(self, client, store, backend):
        backend.add('POST', '/auth/refresh', json_response(200, {'accessToken': 'a2', 'refreshToken': 'r2'}))

        tokens = await AuthAPI(client).refresh_token('r1')

        assert tokens.refresh_token == 'r2'
        assert backend.last('POST', '/auth/refresh').body == {'refreshToken': 'r1'}
        assert store.read_refresh().value == 'r2'


class TestContestsAPI:

    @pytest.mark.asyncio
    async def test_get_paginated_with_status(self, client, backend):
        backend.add('GET', '/contests/paginated', json_response(200, paginated([CONTEST], page=2, total_pages=3)))

        page = await ContestsAPI(client).get_paginated({'page': 2, 'limit': 10, 'status': ContestStatus.ACTIVE})

        assert backend.last('GET', '/contests/paginated').params == {'page': '2', 'limit': '10', 'status': 'ACTIVE'}
        contest = page.items[0]
        assert contest.status == ContestStatus.ACTIVE
        assert contest.total_prize_pool == Decimal('150000')
        assert contest.start_date == datetime(2025, 2, 1, tzinfo=timezone.utc)
        assert page.has_next

    @pytest.mark.asyncio
    async def test_get_all_without_params(self, client, backend):
        backend.add('GET', '/contests', json_response(200, paginated([])))

        page = await ContestsAPI(client).get_all()

        assert backend.last('GET', '/contests').params is None
        assert page.items == []
        assert not page.has_next

    @pytest.mark.asyncio
    async def test_active_and_upcoming(self, client, backend):
        upcoming = dict(CONTEST, id=13, status='JUDGING')
        backend.add('GET', '/contests/active-upcoming', json_response(200, [CONTEST, upcoming]))

        contests = await ContestsAPI(client).get_active_and_upcoming()

        assert [c.status for c in contests] == [ContestStatus.ACTIVE, ContestStatus.JUDGING]

    @pytest.mark.asyncio
    async def test_join_and_leave(self, client, store, backend):
        store.write('a', 'r')
        backend.add('POST', '/contests/12/join', json_response(201, {'contestId': 12, 'userId': 7}))
        backend.add('DELETE', '/contests/12/leave', json_response(200, {}))
        contests = ContestsAPI(client)

        participation = await contests.join(12)
        await contests.leave(12)

        assert participation.contest_id == 12
        assert backend.last('POST', '/contests/12/join').body is None

    @pytest.mark.asyncio
    async def test_participation(self, client, backend):
        backend.add('GET', '/contests/12/participation', json_response(200, {
            'participated': True,
            'participation': {'joinedAt': '2025-02-02T08:00:00Z'},
            'issuesSubmitted': [{'title': 'Oracle manipulation', 'severity': 'medium', 'status': 'APPROVED'}],
        }))

        participation = await ContestsAPI(client).get_participation(12)

        assert participation.participated
        assert participation.joined_at.year == 2025
        assert participation.issues_submitted[0].severity == Severity.MEDIUM

    @pytest.mark.asyncio
    async def test_participants_ignore_filters(self, client, backend):
        backend.add('GET', '/contests/12/participants', json_response(200, paginated([])))

        await ContestsAPI(client).get_participants(12, {'page': 1, 'sortBy': 'joinedAt', 'role': 'judge'})

        assert backend.last('GET', '/contests/12/participants').params == {'page': '1', 'sortBy': 'joinedAt'}


class TestIssuesAPI:

    @pytest.mark.asyncio
    async def test_missing_escalation_is_none(self, client, store, backend, signals):
        store.write('a', 'r')
        backend.add('GET', '/issues/123/escalation', json_response(404, {'message': 'Not found'}))

        assert await IssuesAPI(client).get_escalation(123) is None
        assert backend.count('POST', '/auth/refresh') == 0

    @pytest.mark.asyncio
    async def test_escalation_other_errors_raise(self, client, backend):
        backend.add('GET', '/issues/123/escalation', json_response(403, {'message': 'Forbidden'}))

        with pytest.raises(ApiError) as exc_info:
            await IssuesAPI(client).get_escalation(123)

        assert exc_info.value.status == 403

    @pytest.mark.asyncio
    async def test_escalation_thread(self, client, backend):
        backend.add('GET', '/issues/123/escalation', json_response(200, {
            'id': 5, 'issueId': 123, 'auditorComment': 'This is high, not medium'
        }))

        escalation = await IssuesAPI(client).get_escalation(123)

        assert escalation.issue_id == 123
        assert escalation.awaiting_judge

    @pytest.mark.asyncio
    async def test_create_and_answer_escalation(self, client, backend):
        backend.add('POST', '/issues/123/escalation', json_response(201, {'id': 5, 'issueId': 123}))
        backend.add('PATCH', '/issues/123/escalation', json_response(200, {
            'id': 5, 'issueId': 123, 'auditorComment': 'x', 'judgeResponse': 'Agreed'
        }))
        issues = IssuesAPI(client)

        await issues.create_escalation(123, {'auditorComment': 'x'})
        answered = await issues.update_escalation(123, {'judgeResponse': 'Agreed'})

        assert backend.last('POST', '/issues/123/escalation').body == {'auditorComment': 'x'}
        assert not answered.awaiting_judge

    @pytest.mark.asyncio
    async def test_issues_by_contest(self, client, backend):
        backend.add('GET', '/contests/12/issues', json_response(200, paginated([ISSUE])))

        page = await IssuesAPI(client).get_by_contest(12, {'page': 1, 'severity': 'high'})

        assert backend.last('GET', '/contests/12/issues').params == {'page': '1', 'severity': 'high'}
        assert page.items[0].severity == Severity.HIGH
        assert page.items[0].status == IssueStatus.SUBMITTED

    @pytest.mark.asyncio
    async def test_comments(self, client, backend):
        comment = {'id': 1, 'issueId': 123, 'userId': 7, 'content': 'Confirmed'}
        backend.add('GET', '/issues/123/comments', json_response(200, paginated([comment])))
        backend.add('POST', '/issues/123/comments', json_response(201, comment))
        issues = IssuesAPI(client)

        page = await issues.get_comments(123)
        created = await issues.create_comment(123, {'content': 'Confirmed'})

        assert page.items[0].content == 'Confirmed'
        assert created.id == 1

    @pytest.mark.asyncio
    async def test_crud(self, client, backend):
        backend.add('POST', '/issues', json_response(201, ISSUE))
        backend.add('PATCH', '/issues/123', json_response(200, dict(ISSUE, title='Updated')))
        backend.add('DELETE', '/issues/123', json_response(200, {}))
        backend.add('GET', '/issues/123', json_response(200, ISSUE))
        issues = IssuesAPI(client)

        created = await issues.create({'contestId': 12, 'title': ISSUE['title'], 'severity': 'high'})
        updated = await issues.update(123, {'title': 'Updated'})
        fetched = await issues.get_by_id(123)
        await issues.delete(123)

        assert created.id == 123
        assert updated.title == 'Updated'
        assert fetched.contest_id == 12
        assert backend.count('DELETE', '/issues/123') == 1


class TestUsersAPI:

    @pytest.mark.asyncio
    async def test_profile(self, client, backend):
        backend.add('GET', '/users/profile', json_response(200, USER))
        backend.add('PATCH', '/users/profile', json_response(200, dict(USER, bio='Solidity auditor')))
        users = UsersAPI(client)

        profile = await users.get_profile()
        updated = await users.update_profile({'bio': 'Solidity auditor'})

        assert profile.role == UserRole.AUDITOR
        assert profile.score == Decimal('1520.5')
        assert updated.bio == 'Solidity auditor'

    @pytest.mark.asyncio
    async def test_get_all_and_by_id(self, client, backend):
        backend.add('GET', '/users', json_response(200, paginated([USER])))
        backend.add('GET', '/users/7', json_response(200, USER))
        users = UsersAPI(client)

        page = await users.get_all({'sortBy': 'score', 'sortOrder': 'DESC', 'limit': 10})
        user = await users.get_by_id(7)

        assert list(backend.last('GET', '/users').params.items()) == [
            ('limit', '10'), ('sortBy', 'score'), ('sortOrder', 'DESC')
        ]
        assert page.items[0].id == user.id == 7


class TestQueryParams:

    def test_falsy_pagination_values_are_skipped(self):
        assert build_query_params({'page': 0, 'limit': None}) is None

    def test_filters_follow_pagination_keys(self):
        query = build_query_params({'contestId': 4, 'page': 1, 'isValid': True, 'status': None})

        assert list(query.items()) == [('page', '1'), ('contestId', '4'), ('isValid', 'true')]

    def test_filters_can_be_excluded(self):
        assert build_query_params({'page': 3, 'q': 'x'}, include_filters=False) == {'page': '3'}
