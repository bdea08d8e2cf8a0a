"""
Shared kernel: JSON log formatting and exception-to-status mapping.
"""
import json
import logging

import pytest
from pythonjsonlogger.json import JsonFormatter

from facility_helpdesk.core.exceptions import (
    ApplicationException,
    ConcurrentModificationException,
    ConfigurationException,
    DomainException,
    ExternalServiceException,
    InvalidEscalationException,
    InvalidTransitionException,
    RepositoryException,
    ResourceNotFoundException,
    RuleNotFoundException,
    ValidationException,
)
from facility_helpdesk.shared.api.middleware import status_code_for
from facility_helpdesk.shared.infrastructure.logging import (
    CustomJsonFormatter, get_context_logger
)


class TestCustomJsonFormatter:
    def _format(self, **extra) -> dict:
        formatter = CustomJsonFormatter(
            fmt="%(name)s %(levelname)s %(message)s", environment="testing"
        )
        record = logging.LogRecord(
            "facility_helpdesk.test", logging.INFO, __file__, 1, "Ticket escalated", None, None
        )
        for key, value in extra.items():
            setattr(record, key, value)
        return json.loads(formatter.format(record))

    def test_adds_context_fields(self):
        data = self._format(ticket_id="HD-1001", correlation_id="abc")
        assert data["message"] == "Ticket escalated"
        assert data["ticket_id"] == "HD-1001"
        assert data["correlation_id"] == "abc"
        assert data["environment"] == "testing"
        assert "timestamp" in data

    def test_redacts_secrets(self):
        data = self._format(slack_webhook_url="https://hooks.slack.com/services/T/B/X")
        assert data["slack_webhook_url"] == "***REDACTED***"

    def test_builds_on_current_json_formatter(self):
        assert issubclass(CustomJsonFormatter, JsonFormatter)

    def test_context_logger(self):
        assert isinstance(get_context_logger("x", "abc"), logging.LoggerAdapter)
        assert isinstance(get_context_logger("x"), logging.Logger)


class TestStatusMapping:
    @pytest.mark.parametrize("exc,code", [
        (ResourceNotFoundException("Ticket", "HD-1"), 404),
        (RuleNotFoundException("Electrical", None, None, "P2"), 404),
        (ValidationException("bad"), 422),
        (InvalidTransitionException("HD-1", "Open", "Resolved", ["WIP"]), 409),
        (InvalidEscalationException("HD-1", "ticket is resolved"), 409),
        (ConcurrentModificationException("Ticket", "HD-1", 3), 409),
        (DomainException("Ticket HD-1 already exists"), 409),
        (ExternalServiceException("slack", "timeout"), 502),
        (ConfigurationException("bad policy"), 500),
        (RepositoryException("connection lost"), 500),
        (ApplicationException("other"), 500),
    ])
    def test_status_code_for(self, exc, code):
        assert status_code_for(exc) == code
