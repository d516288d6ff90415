"""
Tests for structured errors, logging, the event bus and the client error handler.
"""

import io
import json
import logging
from datetime import datetime
from unittest.mock import Mock

import pytest

from dualguard.client.error_handling import ClientErrorHandler, ErrorDisplayMode, MAX_ERROR_HISTORY
from dualguard.client.endpoints import OPTIONAL_RESOURCES
from dualguard.client.user_storage import UserStorage
from dualguard.shared.events import EventBus, AUTH_SIGNOUT, API_ERROR
from dualguard.shared.exceptions import (
    DualGuardError, ApiError, ConfigurationError, TokenStorageError,
    ErrorCode, ErrorSeverity, RecoveryAction, handle_exception
)
from dualguard.shared.logging_config import (
    setup_logging, LogLevel, LogFormat, AuditLogger, StructuredFormatter, log_structured_error
)
from dualguard.shared.models import User


class TestStructuredExceptions:
    """Test structured exception hierarchy."""

    def test_dualguard_error_creation(self):
        error = DualGuardError(
            message="Test error message",
            error_code=ErrorCode.STORAGE_READ_FAILED,
            severity=ErrorSeverity.HIGH,
            context={'test_key': 'test_value'},
            recovery_actions=[RecoveryAction.RETRY]
        )

        assert error.message == "Test error message"
        assert str(error) == "Test error message"
        assert error.context['test_key'] == 'test_value'
        assert isinstance(error.timestamp, datetime)

    @pytest.mark.parametrize('status, code', [
        (0, ErrorCode.NETWORK_CONNECTION_FAILED),
        (401, ErrorCode.AUTH_UNAUTHORIZED),
        (403, ErrorCode.AUTH_FORBIDDEN),
        (404, ErrorCode.RESPONSE_NOT_FOUND),
        (422, ErrorCode.RESPONSE_CLIENT_ERROR),
        (503, ErrorCode.RESPONSE_SERVER_ERROR),
    ])
    def test_api_error_classification(self, status, code):
        error = ApiError("failed", status=status)

        assert error.error_code == code
        assert error.context['status'] == status

    def test_api_error_predicates(self):
        assert ApiError("x", 0).is_network_error
        assert ApiError("x", 401).is_unauthorized
        assert ApiError("x", 404).is_not_found
        assert ApiError("x", 409).is_client_error
        assert not ApiError("x", 500).is_client_error
        assert ApiError("x", 500).is_server_error

    def test_api_error_to_dict(self):
        error = ApiError("Not found", 404, code="ISSUE_NOT_FOUND", details={'id': 3})

        data = error.to_dict()['error']

        assert data['status'] == 404
        assert data['api_code'] == "ISSUE_NOT_FOUND"
        assert data['details'] == {'id': 3}
        assert data['code'] == ErrorCode.RESPONSE_NOT_FOUND.value

    def test_cause_is_recorded(self):
        cause = ValueError("bad json")
        error = ApiError("Failed to parse response", 200, cause=cause)

        assert error.cause is cause
        assert error.context['cause_type'] == 'ValueError'

    def test_explicit_none_context(self):
        assert ApiError("x", 500, context=None).context == {'status': 500}
        assert ConfigurationError("x", ErrorCode.CONFIG_INVALID_VALUE, context=None).context == {}

    def test_caller_context_is_not_modified(self):
        context = {'command': 'whoami'}

        DualGuardError("boom", ErrorCode.INTERNAL_UNEXPECTED_ERROR, context=context, cause=RuntimeError("boom"))
        ApiError("Not found", 404, context=context)
        ConfigurationError("bad", ErrorCode.CONFIG_INVALID_VALUE, config_key='api.timeout', context=context)
        handle_exception(ConnectionResetError("reset"), context=context)

        assert context == {'command': 'whoami'}

    def test_configuration_error_key(self):
        error = ConfigurationError("bad", ErrorCode.CONFIG_INVALID_VALUE, config_key='api.base_url')
        assert error.context['config_key'] == 'api.base_url'

    def test_storage_error_defaults(self):
        error = TokenStorageError("disk full")
        assert error.error_code == ErrorCode.STORAGE_WRITE_FAILED
        assert error.severity == ErrorSeverity.HIGH

    def test_handle_generic_exception(self):
        structured = handle_exception(KeyError("missing"), context={'operation': 'load'})

        assert structured.error_code == ErrorCode.INTERNAL_UNEXPECTED_ERROR
        assert structured.context['operation'] == 'load'

    def test_handle_connection_error(self):
        structured = handle_exception(ConnectionRefusedError("refused"))

        assert isinstance(structured, ApiError)
        assert structured.status == 0

    def test_handle_structured_error_passthrough(self):
        error = ApiError("x", 400)
        assert handle_exception(error) is error


class TestStructuredLogging:

    def test_structured_formatter_includes_api_error(self):
        formatter = StructuredFormatter()
        record = logging.LogRecord(
            name='dualguard.client.api_client', level=logging.ERROR, pathname=__file__,
            lineno=1, msg='Request failed', args=(), exc_info=None
        )
        record.error_info = ApiError("Request failed", 409, code="ALREADY_JOINED")

        entry = json.loads(formatter.format(record))

        assert entry['message'] == 'Request failed'
        assert entry['error']['status'] == 409
        assert entry['error']['api_code'] == 'ALREADY_JOINED'

    def test_audit_events_go_to_audit_file(self, tmp_path):
        audit_file = tmp_path / 'audit.log'
        setup_logging(
            log_level=LogLevel.INFO,
            log_format=LogFormat.JSON,
            enable_console=False,
            audit_file=str(audit_file)
        )
        try:
            audit_logger = AuditLogger()
            audit_logger.log_authentication("alice@example.com", success=True)
            audit_logger.log_sign_out("http://localhost:3000", reason="refresh_failed")

            lines = audit_file.read_text().splitlines()
            first = json.loads(lines[0])
            second = json.loads(lines[1])
            assert first['audit']['event_type'] == 'authentication'
            assert first['audit']['user'] == 'alice@example.com'
            assert second['audit']['context']['reason'] == 'refresh_failed'
        finally:
            logging.getLogger('dualguard.audit').propagate = True
            for handler in logging.getLogger('dualguard.audit').handlers[:]:
                handler.close()
                logging.getLogger('dualguard.audit').removeHandler(handler)

    def test_log_structured_error(self, caplog):
        logger = logging.getLogger('dualguard.test')
        error = ApiError("boom", 500)

        with caplog.at_level(logging.ERROR, logger='dualguard.test'):
            log_structured_error(logger, error)

        assert caplog.records[-1].error_info is error


class TestEventBus:

    def test_delivery_in_subscription_order(self):
        bus = EventBus()
        received = []
        bus.subscribe(API_ERROR, lambda payload: received.append(('first', payload)))
        bus.subscribe(API_ERROR, lambda payload: received.append(('second', payload)))

        assert bus.emit(API_ERROR, 'x') == 2
        assert received == [('first', 'x'), ('second', 'x')]

    def test_unsubscribe(self):
        bus = EventBus()
        callback = Mock()
        unsubscribe = bus.subscribe(AUTH_SIGNOUT, callback)

        unsubscribe()
        unsubscribe()
        bus.emit(AUTH_SIGNOUT)

        callback.assert_not_called()
        assert bus.subscriber_count(AUTH_SIGNOUT) == 0

    def test_failing_subscriber_does_not_block_others(self):
        bus = EventBus()
        callback = Mock()
        bus.subscribe(AUTH_SIGNOUT, Mock(side_effect=RuntimeError("broken")))
        bus.subscribe(AUTH_SIGNOUT, callback)

        bus.emit(AUTH_SIGNOUT, {'reason': 'logout'})

        callback.assert_called_once_with({'reason': 'logout'})

    def test_no_replay_for_late_subscribers(self):
        bus = EventBus()
        bus.emit(AUTH_SIGNOUT)
        callback = Mock()
        bus.subscribe(AUTH_SIGNOUT, callback)

        callback.assert_not_called()


class TestClientErrorHandler:

    @pytest.fixture
    def bus(self):
        return EventBus()

    @pytest.fixture
    def user_storage(self, tmp_path):
        return UserStorage(str(tmp_path))

    def test_api_error_is_displayed_and_recorded(self, bus, user_storage):
        stream = io.StringIO()
        handler = ClientErrorHandler(bus, user_storage=user_storage, stream=stream)

        bus.emit(API_ERROR, ApiError("Contest is closed", 409))

        assert "Warning: Contest is closed" in stream.getvalue()
        history = handler.get_error_history()
        assert history[0]['message'] == "Contest is closed"
        assert history[0]['context']['status'] == 409

    def test_verbose_mode_lists_recovery_actions(self, bus):
        stream = io.StringIO()
        ClientErrorHandler(bus, display_mode=ErrorDisplayMode.VERBOSE, stream=stream)

        bus.emit(API_ERROR, ApiError("Connection refused", 0))

        output = stream.getvalue()
        assert "Error: Connection refused" in output
        assert "try: Retry" in output

    def test_silent_mode(self, bus):
        stream = io.StringIO()
        handler = ClientErrorHandler(bus, display_mode=ErrorDisplayMode.SILENT, stream=stream)

        bus.emit(API_ERROR, ApiError("x", 500))

        assert stream.getvalue() == ""
        assert len(handler.get_error_history()) == 1

    def test_history_is_bounded(self, bus):
        handler = ClientErrorHandler(bus, display_mode=ErrorDisplayMode.SILENT)

        for i in range(MAX_ERROR_HISTORY + 5):
            bus.emit(API_ERROR, ApiError(f"error {i}", 500))

        history = handler.get_error_history()
        assert len(history) == MAX_ERROR_HISTORY
        assert history[-1]['message'] == f"error {MAX_ERROR_HISTORY + 4}"

    def test_signout_clears_cached_user(self, bus, user_storage):
        user_storage.save(User(id=1, username='alice'))
        handler = ClientErrorHandler(bus, user_storage=user_storage)
        callback = Mock()
        handler.add_signout_callback(callback)

        bus.emit(AUTH_SIGNOUT, {'reason': 'refresh_failed'})

        assert user_storage.load() is None
        assert handler.signed_out
        callback.assert_called_once_with()

    def test_generic_exception_is_structured(self, bus):
        handler = ClientErrorHandler(bus, display_mode=ErrorDisplayMode.SILENT)

        handler.handle_error(RuntimeError("unexpected"), context={'command': 'whoami'})

        entry = handler.get_error_history()[0]
        assert entry['error_code'] == ErrorCode.INTERNAL_UNEXPECTED_ERROR.value
        assert entry['additional_context'] == {'command': 'whoami'}

    def test_missing_optional_resource_is_not_reported(self, bus):
        stream = io.StringIO()
        handler = ClientErrorHandler(bus, stream=stream, optional_resources=OPTIONAL_RESOURCES)

        bus.emit(API_ERROR, ApiError("Escalation not found", 404, context={'path': '/issues/5/escalation'}))
        bus.emit(API_ERROR, ApiError("Issue not found", 404, context={'path': '/issues/5'}))

        assert "Escalation not found" not in stream.getvalue()
        assert "Issue not found" in stream.getvalue()
        assert [entry['message'] for entry in handler.get_error_history()] == ["Issue not found"]

    def test_close_unsubscribes(self, bus):
        handler = ClientErrorHandler(bus)
        handler.close()

        assert bus.subscriber_count(API_ERROR) == 0
        assert bus.subscriber_count(AUTH_SIGNOUT) == 0
