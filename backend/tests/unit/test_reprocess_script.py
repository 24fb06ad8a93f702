"""
Unit tests for the manual replay script.
"""

import runpy
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.config.settings import Settings
from app.infrastructure.exceptions import ConfigurationError


SCRIPT_PATH = Path(__file__).resolve().parents[2] / "scripts" / "reprocess_failed_webhooks.py"


@pytest.fixture
def script_main():
    return runpy.run_path(str(SCRIPT_PATH))["main"]


class TestReprocessScript:

    @pytest.mark.asyncio
    async def test_memory_backend_is_rejected(self, script_main):
        build = MagicMock()

        with patch.dict(script_main.__globals__, {"build_webhook_processor": build}):
            with pytest.raises(ConfigurationError) as exc_info:
                await script_main(5, Settings(_env_file=None, storage_backend="memory"))

        assert "postgres" in exc_info.value.message
        build.assert_not_called()

    @pytest.mark.asyncio
    async def test_postgres_backend_replays_and_closes_pool(self, script_main):
        processor = MagicMock()
        processor.reprocess_failed = AsyncMock(return_value={
            "total": 1,
            "processed": 1,
            "failed": 0,
            "processed_ids": ["w1"],
            "failed_ids": [],
        })
        close_db = AsyncMock()

        with patch.dict(script_main.__globals__, {
            "build_webhook_processor": MagicMock(return_value=processor),
            "close_db": close_db,
        }):
            result = await script_main(3, Settings(_env_file=None, storage_backend="postgres"))

        processor.reprocess_failed.assert_awaited_once_with(max_retries=3)
        close_db.assert_awaited_once()
        assert result["processed"] == 1
