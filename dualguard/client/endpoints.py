"""
REST endpoint paths of the DualGuard backend, relative to the API base URL.
"""

import re

# Auth
AUTH_LOGIN = '/auth/login'
AUTH_SIGN_UP = '/auth/signup'
AUTH_LOGOUT = '/auth/logout'
AUTH_LOGOUT_ALL = '/auth/logout-all'
AUTH_REFRESH = '/auth/refresh'
AUTH_VERIFY_EMAIL = '/auth/verify-email'
AUTH_RESEND_VERIFICATION = '/auth/resend-verification'
AUTH_ME = '/auth/me'

# Users
USERS = '/users'
USERS_PROFILE = '/users/profile'


def user(user_id: int) -> str:
    return f'/users/{user_id}'


# Contests
CONTESTS = '/contests'
CONTESTS_PAGINATED = '/contests/paginated'
CONTESTS_ACTIVE_UPCOMING = '/contests/active-upcoming'


def contest(contest_id: int) -> str:
    return f'/contests/{contest_id}'


def contest_join(contest_id: int) -> str:
    return f'/contests/{contest_id}/join'


def contest_leave(contest_id: int) -> str:
    return f'/contests/{contest_id}/leave'


def contest_participants(contest_id: int) -> str:
    return f'/contests/{contest_id}/participants'


def contest_participation(contest_id: int) -> str:
    return f'/contests/{contest_id}/participation'


def contest_issues(contest_id: int) -> str:
    return f'/contests/{contest_id}/issues'


# Issues
ISSUES = '/issues'


def issue(issue_id: int) -> str:
    return f'/issues/{issue_id}'


def issue_comments(issue_id: int) -> str:
    return f'/issues/{issue_id}/comments'


def issue_escalation(issue_id: int) -> str:
    return f'/issues/{issue_id}/escalation'


# Sub-resources that may legitimately not exist; a 404 on them is an answer.
OPTIONAL_RESOURCES = (
    re.compile(r'^/issues/[^/]+/escalation$'),
)
