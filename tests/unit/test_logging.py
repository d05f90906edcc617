"""Unit tests for the pipeline step logger."""

import logging

import pytest

from shiplog.utils.logging import step_timer


class TestStepTimer:
    def test_logs_completion(self, caplog):
        with caplog.at_level(logging.INFO, logger="shiplog"):
            with step_timer("Aggregate acme/widgets@v1.2.0"):
                pass
        messages = [r.getMessage() for r in caplog.records]
        assert any("completed in" in m for m in messages)

    def test_failure_is_not_logged_as_completed(self, caplog):
        with caplog.at_level(logging.INFO, logger="shiplog"):
            with pytest.raises(RuntimeError):
                with step_timer("Aggregate acme/widgets@v1.2.0"):
                    raise RuntimeError("boom")
        messages = [r.getMessage() for r in caplog.records]
        assert not any("completed in" in m for m in messages)
        failed = [r for r in caplog.records if "failed after" in r.getMessage()]
        assert len(failed) == 1
        assert failed[0].levelno == logging.WARNING
        assert "boom" in failed[0].getMessage()
