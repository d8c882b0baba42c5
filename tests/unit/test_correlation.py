"""
Unit tests for correlation ID scopes.
"""

import asyncio

import pytest

from dewpoint_controller.correlation import correlation_scope, get_correlation_id, new_correlation_id


class TestCorrelation:
    """Tests for correlation_scope()"""

    def test_no_scope(self):
        """Test that there is no ID outside of a scope"""
        assert get_correlation_id() is None

    def test_new_id_format(self):
        """Test generated IDs are 12 hex characters and unique"""
        first, second = new_correlation_id(), new_correlation_id()

        assert len(first) == 12
        int(first, 16)
        assert first != second

    def test_scope_sets_and_restores(self):
        """Test nested scopes restore the outer ID"""
        with correlation_scope("outer") as outer:
            assert outer == "outer"
            with correlation_scope() as inner:
                assert get_correlation_id() == inner
                assert inner != "outer"
            assert get_correlation_id() == "outer"
        assert get_correlation_id() is None

    def test_scope_restored_on_error(self):
        """Test that an exception inside the block still resets the ID"""
        with pytest.raises(RuntimeError), correlation_scope("abc"):
            raise RuntimeError("boom")

        assert get_correlation_id() is None

    @pytest.mark.asyncio
    async def test_tasks_inherit_id(self):
        """Test that tasks created inside a scope see its ID"""

        async def read_id():
            return get_correlation_id()

        with correlation_scope("task-scope"):
            task = asyncio.create_task(read_id())

        assert await task == "task-scope"
