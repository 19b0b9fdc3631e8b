"""Unit tests for orchestrator error handling paths."""
import logging
import pytest

from mbe.domain.errors import CancellationError, ItemNotFoundError, SubmissionError
from mbe.domain.events import Failed, Progress, Started
from mbe.domain.models import FileStatus


class TestSubmissionErrors:
    """Backend rejects or blows up on submit."""

    def test_submission_failure_is_logged(self, orchestrator, mock_backend, run, caplog):
        orchestrator.add_item("a.mp4", item_id="a", selected=True)
        mock_backend.submit.side_effect = SubmissionError("a", "queue full")

        with caplog.at_level(logging.ERROR, logger="mbe.pipeline.orchestrator"):
            run(orchestrator.start_conversion())

        assert "Failed to queue conversion for a: queue full" in caplog.text
        item = orchestrator.get_item("a")
        assert item.status == FileStatus.ERROR
        assert item.progress == 0
        assert orchestrator.is_processing is False

    def test_unexpected_exception_without_message(self, orchestrator, mock_backend, run):
        orchestrator.add_item("a.mp4", item_id="a", selected=True)
        mock_backend.submit.side_effect = RuntimeError()

        run(orchestrator.start_conversion())

        assert orchestrator.get_item("a").error == "RuntimeError"

    def test_queue_for_file_failure_does_not_raise(self, orchestrator, mock_backend, run):
        orchestrator.add_item("a.mp4", item_id="a")
        mock_backend.submit.side_effect = ConnectionError("backend unreachable")

        assert run(orchestrator.queue_for_file("a")) is False

        assert orchestrator.get_item("a").status == FileStatus.ERROR
        assert orchestrator.logs["a"] == [
            "[QUEUE] Queuing conversion...",
            "[ERROR] Failed to queue conversion: backend unreachable",
        ]
        assert orchestrator.is_processing is False

    def test_queue_for_unknown_item_raises(self, orchestrator, run):
        with pytest.raises(ItemNotFoundError):
            run(orchestrator.queue_for_file("missing"))


class TestCancellation:
    """cancel_task never raises; success returns the item to IDLE."""

    def test_cancel_running_item(self, orchestrator, mock_backend, run):
        orchestrator.add_item("a.mp4", item_id="a", selected=True)
        run(orchestrator.start_conversion())
        orchestrator.handle_event(Started(item_id="a"))
        orchestrator.handle_event(Progress(item_id="a", percent=35))

        assert run(orchestrator.cancel_task("a")) is True

        mock_backend.cancel.assert_awaited_once_with("a")
        item = orchestrator.get_item("a")
        assert item.status == FileStatus.IDLE
        assert item.progress == 0
        assert orchestrator.logs["a"][-1] == "[CANCEL] Cancelled"
        assert orchestrator.is_processing is False

    def test_cancel_failure_is_logged_not_raised(self, orchestrator, mock_backend, run, caplog):
        orchestrator.add_item("a.mp4", item_id="a", selected=True)
        run(orchestrator.start_conversion())
        orchestrator.handle_event(Started(item_id="a"))
        mock_backend.cancel.side_effect = CancellationError("a", "no running task")

        with caplog.at_level(logging.ERROR, logger="mbe.pipeline.orchestrator"):
            assert run(orchestrator.cancel_task("a")) is False

        assert "Failed to cancel task a" in caplog.text
        assert orchestrator.get_item("a").status == FileStatus.CONVERTING
        assert orchestrator.logs["a"][-1] == "[CANCEL] Cancel failed: Cancel failed for a: no running task"
        assert orchestrator.is_processing is True

    def test_cancel_failure_for_unknown_item(self, orchestrator, mock_backend, run):
        mock_backend.cancel.side_effect = RuntimeError("gone")

        assert run(orchestrator.cancel_task("ghost")) is False
        assert "ghost" not in orchestrator.logs

    def test_cancel_idle_item_leaves_it_alone(self, orchestrator, run):
        orchestrator.add_item("a.mp4", item_id="a")

        assert run(orchestrator.cancel_task("a")) is True
        assert orchestrator.get_item("a").status == FileStatus.IDLE
        assert "a" not in orchestrator.logs

    def test_backend_failure_after_cancel_is_ignored(self, orchestrator, run):
        orchestrator.add_item("a.mp4", item_id="a", selected=True)
        run(orchestrator.start_conversion())
        orchestrator.handle_event(Started(item_id="a"))
        run(orchestrator.cancel_task("a"))

        orchestrator.handle_event(Failed(item_id="a", message="Cancelled by user"))
        orchestrator.handle_event(Progress(item_id="a", percent=90))

        item = orchestrator.get_item("a")
        assert item.status == FileStatus.IDLE
        assert item.error is None
        assert item.progress == 0

    def test_cancelled_item_can_be_queued_again(self, orchestrator, mock_backend, run):
        orchestrator.add_item("a.mp4", item_id="a", selected=True)
        run(orchestrator.start_conversion())
        run(orchestrator.cancel_task("a"))

        assert run(orchestrator.queue_for_file("a")) is True
        assert orchestrator.get_item("a").status == FileStatus.QUEUED
        assert mock_backend.submit.await_count == 2
