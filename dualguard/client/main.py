"""
Main entry point for the DualGuard command-line client.

This module wires configuration, logging, the event bus, credential storage
and the API client together once, then runs a single command against the
backend.
"""

import asyncio
import getpass
import json
import logging
import sys
import argparse
from enum import Enum
from typing import Any, Optional

from aiohttp import CookieJar

from dualguard import __version__
from dualguard.client import endpoints
from dualguard.client.api.auth import AuthAPI
from dualguard.client.api.contests import ContestsAPI
from dualguard.client.api.issues import IssuesAPI
from dualguard.client.api_client import DualGuardAPIClient
from dualguard.client.auth.token_storage import (
    CredentialStore, CookieCredentialStore, SecureTokenStorage, MemoryCredentialStore
)
from dualguard.client.config import ClientConfiguration
from dualguard.client.error_handling import ClientErrorHandler, ErrorDisplayMode
from dualguard.client.user_storage import UserStorage
from dualguard.shared.events import EventBus
from dualguard.shared.exceptions import ApiError, ConfigurationError, TokenStorageError
from dualguard.shared.logging_config import setup_logging, LogLevel, LogFormat

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_AUTH_FAILED = 2
EXIT_INTERRUPTED = 130


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="dualguard",
        description="DualGuard smart-contract audit platform client",
        epilog="""
Examples:
  %(prog)s login --email alice@example.com
  %(prog)s contests --status active
  %(prog)s join 12
  %(prog)s escalation 345
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    config_group = parser.add_argument_group('Configuration')
    config_group.add_argument("--config", type=str, metavar="FILE",
                              help="Configuration file path")
    config_group.add_argument("--api-url", type=str, metavar="URL",
                              help="Override API base URL")
    config_group.add_argument("--storage", choices=("cookie", "keyring", "memory"),
                              help="Override credential storage")

    output_group = parser.add_argument_group('Output')
    output_group.add_argument("--json", action="store_true",
                              help="Output results in JSON format")
    output_group.add_argument("--verbose", "-v", action="store_true",
                              help="Enable verbose output")
    output_group.add_argument("--quiet", "-q", action="store_true",
                              help="Suppress non-essential output")

    debug_group = parser.add_argument_group('Debug')
    debug_group.add_argument("--debug", action="store_true",
                             help="Enable debug logging")
    debug_group.add_argument("--log-file", type=str, metavar="FILE",
                             help="Log to file")
    debug_group.add_argument("--audit-file", type=str, metavar="FILE",
                             help="Write audit events to file")

    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    commands.required = True

    login = commands.add_parser("login", help="Sign in with email and password")
    login.add_argument("--email", type=str, help="Account email (prompted if omitted)")

    logout = commands.add_parser("logout", help="Sign out")
    logout.add_argument("--all", action="store_true", help="Sign out every session of the account")

    commands.add_parser("whoami", help="Show the signed-in user")

    contests = commands.add_parser("contests", help="List contests")
    contests.add_argument("--status", type=str, help="Only contests with this status")
    contests.add_argument("--page", type=int, default=1)
    contests.add_argument("--limit", type=int, default=20)

    contest = commands.add_parser("contest", help="Show one contest")
    contest.add_argument("contest_id", type=int, metavar="ID")

    join = commands.add_parser("join", help="Join a contest")
    join.add_argument("contest_id", type=int, metavar="ID")

    leave = commands.add_parser("leave", help="Leave a contest")
    leave.add_argument("contest_id", type=int, metavar="ID")

    issues = commands.add_parser("issues", help="List the issues of a contest")
    issues.add_argument("contest_id", type=int, metavar="CONTEST_ID")
    issues.add_argument("--page", type=int, default=1)

    escalation = commands.add_parser("escalation", help="Show the escalation thread of an issue")
    escalation.add_argument("issue_id", type=int, metavar="ISSUE_ID")

    return parser.parse_args(argv)


def configure_logging(args, config: ClientConfiguration) -> None:
    """Configure logging from configuration and command line arguments."""
    if args.debug:
        log_level = LogLevel.DEBUG
    elif args.verbose:
        log_level = LogLevel.INFO
    elif args.quiet or args.json:
        log_level = LogLevel.ERROR
    else:
        try:
            log_level = LogLevel(config.get_log_level())
        except ValueError:
            log_level = LogLevel.WARNING
        if log_level == LogLevel.INFO:
            # INFO is for files; the terminal stays readable by default
            log_level = LogLevel.WARNING

    try:
        log_format = LogFormat(config.get_log_format())
    except ValueError:
        log_format = LogFormat.STANDARD
    if args.debug and log_format == LogFormat.STANDARD:
        log_format = LogFormat.DETAILED

    setup_logging(
        log_level=log_level,
        log_format=log_format,
        log_file=args.log_file or config.get_log_file(),
        audit_file=args.audit_file or config.get_audit_file()
    )


def create_credential_store(config: ClientConfiguration, cookie_jar: CookieJar) -> CredentialStore:
    """Build the credential store selected by configuration."""
    storage = config.get_auth_storage()

    if storage == 'keyring':
        return SecureTokenStorage(
            account=config.get_api_base_url(),
            storage_dir=str(config.get_config_directory()),
            access_lifetime=config.get_access_token_lifetime(),
            refresh_lifetime=config.get_refresh_token_lifetime()
        )
    if storage == 'memory':
        return MemoryCredentialStore()

    return CookieCredentialStore(
        cookie_jar,
        config.get_api_base_url(),
        client_writes=not config.server_manages_cookies(),
        access_lifetime=config.get_access_token_lifetime(),
        refresh_lifetime=config.get_refresh_token_lifetime(),
        cookie_file=config.get_cookie_file()
    )


def _label(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    return str(value) if value is not None else '-'


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


class CommandRunner:
    """Runs one command against a connected API client."""

    def __init__(self, args, client: DualGuardAPIClient, user_storage: UserStorage):
        self.args = args
        self.client = client
        self.user_storage = user_storage
        self.auth = AuthAPI(client)
        self.contests = ContestsAPI(client)
        self.issues = IssuesAPI(client)

    async def run(self) -> int:
        handler = getattr(self, f"cmd_{self.args.command}")
        return await handler()

    def _say(self, message: str) -> None:
        if not self.args.quiet:
            print(message)

    async def cmd_login(self) -> int:
        email = self.args.email or input("Email: ").strip()
        password = getpass.getpass("Password: ")

        await self.auth.login(email, password)
        user = await self.auth.get_current_user()
        self.user_storage.save(user)

        if self.args.json:
            _print_json(user.to_dict())
        else:
            self._say(f"Signed in as {user.username}")
        return EXIT_OK

    async def cmd_logout(self) -> int:
        if self.args.all:
            await self.auth.logout_all()
        else:
            await self.auth.logout()
        self.user_storage.clear()
        self._say("Signed out")
        return EXIT_OK

    async def cmd_whoami(self) -> int:
        if not self.client.has_credentials():
            self._say("Not signed in")
            return EXIT_AUTH_FAILED

        try:
            user = await self.auth.get_current_user()
        except ApiError as e:
            cached = self.user_storage.load()
            if not e.is_network_error or cached is None:
                raise
            logger.warning("Server unreachable; showing cached user")
            user = cached
        else:
            self.user_storage.save(user)

        if self.args.json:
            _print_json(user.to_dict())
        else:
            print(f"{user.username} ({_label(user.role)})")
            if user.email:
                print(f"  email: {user.email}")
            if user.score is not None:
                print(f"  score: {user.score}")
        return EXIT_OK

    async def cmd_contests(self) -> int:
        page = await self.contests.get_paginated({
            'page': self.args.page,
            'limit': self.args.limit,
            'status': self.args.status,
        })

        if self.args.json:
            _print_json([contest.to_dict() for contest in page.items])
            return EXIT_OK

        for contest in page.items:
            print(f"{contest.id:>6}  {_label(contest.status):<10} {contest.prize_display:>8}  {contest.title}")
        self._say(f"page {page.page}/{max(page.total_pages, 1)} ({page.total} contests)")
        return EXIT_OK

    async def cmd_contest(self) -> int:
        contest = await self.contests.get_by_id(self.args.contest_id)
        participation = None
        if self.client.has_credentials():
            participation = await self.contests.get_participation(contest.id)

        if self.args.json:
            data = contest.to_dict()
            if participation is not None:
                data['participation'] = participation.to_dict()
            _print_json(data)
            return EXIT_OK

        print(f"{contest.title} [{_label(contest.status)}]")
        print(f"  prize pool: {contest.prize_display}")
        print(f"  runs: {contest.start_date:%Y-%m-%d} to {contest.end_date:%Y-%m-%d}")
        if contest.description:
            print(f"  {contest.description}")
        if participation is not None:
            if participation.participated:
                print(f"  joined, {len(participation.issues_submitted)} issue(s) submitted")
            else:
                print("  not joined")
        return EXIT_OK

    async def cmd_join(self) -> int:
        await self.contests.join(self.args.contest_id)
        self._say(f"Joined contest {self.args.contest_id}")
        return EXIT_OK

    async def cmd_leave(self) -> int:
        await self.contests.leave(self.args.contest_id)
        self._say(f"Left contest {self.args.contest_id}")
        return EXIT_OK

    async def cmd_issues(self) -> int:
        page = await self.issues.get_by_contest(self.args.contest_id, {'page': self.args.page})

        if self.args.json:
            _print_json([issue.to_dict() for issue in page.items])
            return EXIT_OK

        for issue in page.items:
            print(f"{issue.id:>6}  {_label(issue.severity):<7} {_label(issue.status):<10} {issue.title}")
        self._say(f"page {page.page}/{max(page.total_pages, 1)} ({page.total} issues)")
        return EXIT_OK

    async def cmd_escalation(self) -> int:
        escalation = await self.issues.get_escalation(self.args.issue_id)

        if escalation is None:
            if self.args.json:
                _print_json(None)
            else:
                self._say(f"Issue {self.args.issue_id} has not been escalated")
            return EXIT_OK

        if self.args.json:
            _print_json(escalation.to_dict())
            return EXIT_OK

        print(f"Escalation of issue {escalation.issue_id}")
        print(f"  auditor: {escalation.auditor_comment or '-'}")
        print(f"  judge:   {escalation.judge_response or '(awaiting response)'}")
        return EXIT_OK


async def run_command(args, config: ClientConfiguration) -> int:
    """
    Build the client once and run the selected command.

    Returns:
        Exit code
    """
    events = EventBus()
    user_storage = UserStorage(str(config.get_config_directory()))
    error_handler = ClientErrorHandler(
        events,
        user_storage=user_storage,
        display_mode=ErrorDisplayMode.VERBOSE if args.verbose else (
            ErrorDisplayMode.SILENT if args.quiet else ErrorDisplayMode.NOTIFICATION
        ),
        optional_resources=endpoints.OPTIONAL_RESOURCES
    )

    # Cookies for IP-addressed development servers are accepted too
    cookie_jar = CookieJar(unsafe=True)
    store = create_credential_store(config, cookie_jar)

    try:
        async with DualGuardAPIClient(
            config.get_api_base_url(),
            store,
            events=events,
            timeout=config.get_api_timeout(),
            cookie_jar=cookie_jar
        ) as client:
            return await CommandRunner(args, client, user_storage).run()
    except ApiError as e:
        if error_handler.signed_out:
            print("Session expired. Run 'dualguard login' to sign in again.", file=sys.stderr)
        logger.debug(f"Command failed: {e!r}")
        return EXIT_AUTH_FAILED if e.is_unauthorized else EXIT_FAILURE
    finally:
        error_handler.close()


def main(argv=None):
    """Main entry point for the client."""
    args = None
    try:
        args = parse_arguments(argv)

        config = ClientConfiguration(config_file=args.config)
        if args.api_url:
            config.set_override('api.base_url', args.api_url)
        if args.storage:
            config.set_override('auth.storage', args.storage)

        configure_logging(args, config)

        return asyncio.run(run_command(args, config))

    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return EXIT_INTERRUPTED
    except (ConfigurationError, TokenStorageError) as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_FAILURE
    except Exception as e:
        print(f"Fatal error: {str(e)}", file=sys.stderr)
        if not getattr(args, 'json', False):
            logger.exception("Fatal error in main")
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
