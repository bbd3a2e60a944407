"""Tests for the structured logging helpers."""

import logging

import pytest

from wastewise.core.logging import log_task_event
from wastewise.domain.user import Actor, ActorRole


logger = logging.getLogger("wastewise.tests.logging")


@pytest.mark.unit
class TestLogTaskEvent:
    def test_attaches_task_and_actor(self, caplog) -> None:
        actor = Actor(id="m1", role=ActorRole.SUSTAINABILITY_MANAGER)

        with caplog.at_level(logging.INFO, logger=logger.name):
            log_task_event(logger, "info", "Task transitioned", task_id="7", actor=actor, to_status="verified")

        record = caplog.records[-1]
        assert record.getMessage() == "Task transitioned"
        assert record.task_id == "7"
        assert record.actor_id == "m1"
        assert record.actor_role == "sustainability_manager"
        assert record.to_status == "verified"

    def test_without_actor(self, caplog) -> None:
        with caplog.at_level(logging.WARNING, logger=logger.name):
            log_task_event(logger, "WARNING", "Successor skipped", task_id="9")

        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert record.task_id == "9"
        assert not hasattr(record, "actor_id")
