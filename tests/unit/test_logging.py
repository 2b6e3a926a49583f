'''
Unit tests for structured logging helpers.
'''

from __future__ import annotations

import json
import logging

from sessionauth.core import (
    LoggingConfig,
    get_logger,
    log_auth_event,
    log_security_event,
    redact,
    setup_logging,
)


class RecordingLogger:
    '''
    Logger stand-in that keeps every call.
    '''

    def __init__(self) -> None:
        self.calls = []

    def info(self, event: str, **kwargs) -> None:
        self.calls.append(('info', event, kwargs))

    def warning(self, event: str, **kwargs) -> None:
        self.calls.append(('warning', event, kwargs))


class TestRedact:
    '''
    Test redaction of sensitive values.
    '''

    def test_sensitive_keys_are_redacted(self) -> None:
        event = {
            'event': 'Token refreshed',
            'access_token': 'abc',
            'Refresh_Token': 'def',
            'details': {'client_secret': 'shh', 'status_code': 200},
        }

        assert redact(event) == {
            'event': 'Token refreshed',
            'access_token': '[REDACTED]',
            'Refresh_Token': '[REDACTED]',
            'details': {'client_secret': '[REDACTED]', 'status_code': 200},
        }

    def test_lists_are_walked(self) -> None:
        assert redact([{'cookie': 'x'}, 'plain']) == [{'cookie': '[REDACTED]'}, 'plain']

    def test_embedded_values_are_redacted(self) -> None:
        '''
        Only the value of a key=value pair inside free text is replaced.
        '''
        leaked = 'upstream said: refresh_token=abcdefghijklmnopqrstuvwxyz0123456789&scope=openid'

        assert redact(leaked) == 'upstream said: refresh_token=[REDACTED]&scope=openid'
        assert redact('Authorization: Bearer abc.def') == 'Authorization: [REDACTED]'
        assert redact('client_secret = shh, retrying') == 'client_secret = [REDACTED], retrying'

    def test_messages_naming_sensitive_settings_are_kept(self) -> None:
        messages = [
            'Cookie-only session storage is not supported; session cookies carry only a signed id',
            'Refusing token refresh: AUTH_TOKEN_REFRESH_API_KEY is not configured for this deployment',
            'Session secrets must be rotated by prepending the new secret to the list',
        ]

        for message in messages:
            assert redact(message) == message


class TestEventHelpers:
    '''
    Test the auth and security event helpers.
    '''

    def test_session_ids_are_masked(self) -> None:
        logger = RecordingLogger()

        log_auth_event(logger, 'login_success', session_id='abcdefghijkl1234', details={'subject': 'user-1'})

        level, _, fields = logger.calls[0]
        assert level == 'info'
        assert fields['event_type'] == 'login_success'
        assert fields['session'] == '************1234'
        assert fields['subject'] == 'user-1'

    def test_security_event(self) -> None:
        logger = RecordingLogger()

        log_security_event(logger, 'csrf_state_mismatch', 'medium', client_ip='10.0.0.1')

        level, _, fields = logger.calls[0]
        assert level == 'warning'
        assert fields['severity'] == 'medium'
        assert fields['client_ip'] == '10.0.0.1'


class TestSetupLogging:
    '''
    Test handler wiring.
    '''

    def test_events_reach_log_file(self, tmp_path) -> None:
        '''
        Events are rendered into the rotating file, redacted.
        '''
        log_file = tmp_path / 'logs' / 'sessionauth.log'
        setup_logging(LoggingConfig(level='INFO', format='json', file_path=str(log_file)))
        try:
            get_logger('sessionauth.file_check').info('Session stored', refresh_token='secret-value', attempt=2)
            for handler in logging.getLogger().handlers:
                handler.flush()
            lines = log_file.read_text(encoding='utf-8').splitlines()
        finally:
            setup_logging(LoggingConfig(level='WARNING', format='text'))

        entry = json.loads(lines[-1])
        assert entry['event'] == 'Session stored'
        assert entry['level'] == 'info'
        assert entry['attempt'] == 2
        assert entry['refresh_token'] == '[REDACTED]'
        assert 'timestamp' in entry

    def test_foreign_records_reach_log_file(self, tmp_path) -> None:
        log_file = tmp_path / 'sessionauth.log'
        setup_logging(LoggingConfig(level='INFO', format='json', file_path=str(log_file)))
        try:
            logging.getLogger('sessionauth.external').warning('Started server process')
            for handler in logging.getLogger().handlers:
                handler.flush()
            lines = log_file.read_text(encoding='utf-8').splitlines()
        finally:
            setup_logging(LoggingConfig(level='WARNING', format='text'))

        entry = json.loads(lines[-1])
        assert entry['event'] == 'Started server process'
        assert entry['level'] == 'warning'
