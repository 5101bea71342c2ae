"""
Unit tests for request-scoped structured logging.
"""

from structlog.testing import capture_logs

from contextrag.core.logging_config import _resolve_json_output, get_logger
from contextrag.shared.models import RequestContext


class TestRequestContext:

    def test_new_contexts_are_distinct(self):
        assert RequestContext.new().correlation_id != RequestContext.new().correlation_id

    def test_log_fields(self):
        ctx = RequestContext.new(experiment_id="exp-7").with_document("doc-1")
        fields = ctx.as_log_fields()

        assert fields["experiment_id"] == "exp-7"
        assert fields["document_id"] == "doc-1"
        assert len(fields["correlation_id"]) == 12

    def test_empty_fields_omitted(self):
        assert set(RequestContext.new().as_log_fields()) == {"correlation_id"}


class TestGetLogger:

    def test_context_bound_to_events(self):
        ctx = RequestContext.new(experiment_id="exp-7")

        with capture_logs() as logs:
            get_logger(__name__, ctx).info("Batch completed", batch_index=2)

        [event] = logs
        assert event["event"] == "Batch completed"
        assert event["batch_index"] == 2
        assert event["correlation_id"] == ctx.correlation_id
        assert event["experiment_id"] == "exp-7"

    def test_without_context(self):
        with capture_logs() as logs:
            get_logger(__name__).warning("Re-ranking failed")
        assert "correlation_id" not in logs[0]


class TestOutputFormat:

    def test_explicit_choice_wins(self, monkeypatch):
        monkeypatch.setenv("LOG_FORMAT", "json")
        assert _resolve_json_output(False) is False

    def test_log_format_env(self, monkeypatch):
        monkeypatch.setenv("LOG_FORMAT", "json")
        assert _resolve_json_output(None) is True

    def test_production_defaults_to_json(self, monkeypatch):
        monkeypatch.delenv("LOG_FORMAT", raising=False)
        monkeypatch.setenv("ENVIRONMENT", "production")
        assert _resolve_json_output(None) is True

    def test_development_defaults_to_console(self, monkeypatch):
        monkeypatch.delenv("LOG_FORMAT", raising=False)
        monkeypatch.delenv("ENVIRONMENT", raising=False)
        assert _resolve_json_output(None) is False
