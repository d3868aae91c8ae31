"""Test sequential multi-write sagas"""

from unittest.mock import Mock

import pytest

from sound_share.core.exceptions import DatastoreError, GraphWriteFailed
from sound_share.social.saga import Saga


class TestSaga:
    """Test Saga"""

    def test_runs_steps_in_order(self):
        """Every step runs, one after the other"""
        calls = []
        saga = Saga("approve_friend_request")
        saga.step("one", lambda: calls.append(1)).step("two", lambda: calls.append(2))

        assert saga.run() == ["one", "two"]
        assert calls == [1, 2]
        assert saga.step_names == ["one", "two"]

    def test_failure_reports_completed_steps(self):
        """A failing step stops the saga and names what finished"""
        later = Mock()
        saga = Saga("approve_friend_request", safe_partial_state="edges may be one-sided")
        saga.step("write_own_edge", Mock())
        saga.step("write_peer_edge", Mock(side_effect=DatastoreError("offline")))
        saga.step("delete_request", later)

        with pytest.raises(GraphWriteFailed) as exc_info:
            saga.run()

        error = exc_info.value
        assert error.operation == "approve_friend_request"
        assert error.failed_step == "write_peer_edge"
        assert error.completed_steps == ["write_own_edge"]
        assert error.details["safe_partial_state"] == "edges may be one-sided"
        later.assert_not_called()

    def test_other_exceptions_propagate(self):
        """Only datastore failures are wrapped"""
        saga = Saga("remove_friend").step("boom", Mock(side_effect=RuntimeError("bug")))

        with pytest.raises(RuntimeError):
            saga.run()

    def test_duplicate_step_name(self):
        saga = Saga("remove_friend").step("delete_own_edge", Mock())
        with pytest.raises(ValueError):
            saga.step("delete_own_edge", Mock())
