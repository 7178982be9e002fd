"""Tests for the worker process entry point.

This test module covers:
- Periodic task loop (failures are logged and the loop continues)
- Shutdown signal handling (all tasks cancelled)
- main() exit codes for configuration and fatal errors
"""

import asyncio
import os
import signal
from unittest.mock import AsyncMock, patch

import pytest

from petpulse import worker


class TestRunPeriodically:
    @pytest.mark.asyncio
    async def test_failing_pass_does_not_stop_loop(self):
        calls = []

        async def action():
            calls.append(len(calls))
            if len(calls) == 1:
                raise RuntimeError("transient")
            if len(calls) == 3:
                raise asyncio.CancelledError

        with pytest.raises(asyncio.CancelledError):
            await worker.run_periodically("test", 0, action)

        assert len(calls) == 3


class TestShutdown:
    @pytest.mark.asyncio
    async def test_request_shutdown_cancels_all_tasks(self):
        tasks = [asyncio.create_task(asyncio.sleep(60)) for _ in range(3)]

        worker._request_shutdown(signal.SIGTERM, tasks)
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(r, asyncio.CancelledError) for r in results)


class TestMain:
    @patch.dict(os.environ, {}, clear=True)
    def test_exits_with_code_1_without_database_url(self):
        worker.get_database_url.cache_clear()
        with pytest.raises(SystemExit) as exc_info:
            worker.main()
        assert exc_info.value.code == 1

    @patch.dict(os.environ, {"DATABASE_URL": "postgresql://u:p@db:5432/petpulse"})
    def test_exits_with_code_1_on_fatal_error(self):
        worker.get_database_url.cache_clear()
        with patch(
            "petpulse.worker.worker_main_loop",
            new_callable=AsyncMock,
            side_effect=OSError("database unreachable"),
        ):
            with pytest.raises(SystemExit) as exc_info:
                worker.main()
        assert exc_info.value.code == 1
        worker.get_database_url.cache_clear()

    @patch.dict(os.environ, {"DATABASE_URL": "postgresql://u:p@db:5432/petpulse"})
    def test_clean_shutdown_returns_normally(self):
        worker.get_database_url.cache_clear()
        with patch("petpulse.worker.worker_main_loop", new_callable=AsyncMock) as main_loop:
            worker.main()
        main_loop.assert_awaited_once()
        worker.get_database_url.cache_clear()
