"""Unit tests for main.py wiring."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

import main
from config.loader import _OPTIONS
from config.validate import validate_settings
from shared.types import DataFinality, EventFilter

CONTRACT = "0x" + "0" * 60 + "beef"


@pytest.fixture
def clean_env(monkeypatch):
    for _dest, _flags, env_vars, _help in _OPTIONS:
        for env_var in env_vars:
            monkeypatch.delenv(env_var, raising=False)
    monkeypatch.setattr(main, "load_dotenv", lambda: None)
    return monkeypatch


class TestBuildSubscription:
    def test_subscription_from_settings(self):
        settings = validate_settings(
            {
                "storage_url": "redis://127.0.0.1:6379",
                "apibara_key": "dna_x",
                "network": "mainnet",
                "contract_address": "0xbeef",
                "starting_block": "42",
                "checkpoint_backend": "file",
                "checkpoint_path": "state.json",
                "checkpoint_key": "k",
                "finality": "accepted",
                "header_mode": "weak",
                "batch_size": 16,
                "queue_maxsize": 0,
                "queue_policy": "block",
                "max_restarts": 1,
            }
        )

        subscription = main.build_subscription(settings)

        assert subscription.starting_block == 42
        assert subscription.finality is DataFinality.ACCEPTED
        assert subscription.batch_size == 16
        assert subscription.event_filters == (EventFilter(from_address=CONTRACT),)


class TestRun:
    async def test_invalid_configuration_exits_one(self, clean_env):
        assert await main._run([]) == 1

    async def test_unreachable_storage_exits_one(self, clean_env):
        clean_env.setenv("APIBARA_KEY", "dna_x")
        clean_env.setenv("CONTRACT_ADDRESS", "0xbeef")
        store = AsyncMock()
        store.check_connection.side_effect = main.StorageError("down")

        with patch("main.ObjectStore", return_value=store):
            code = await main._run(["--checkpoint-backend", "storage"])

        assert code == 1
        store.close.assert_awaited_once()

    async def test_shutdown_summary_reports_queue_counters(self, clean_env, tmp_path):
        clean_env.setenv("APIBARA_KEY", "dna_x")
        clean_env.setenv("CONTRACT_ADDRESS", "0xbeef")

        def _fake_supervisor(indexer, consumer, queue, **kwargs):
            queue.dropped = 3
            queue.delivered = 12
            supervisor = MagicMock()
            supervisor.run = AsyncMock(return_value=0)
            return supervisor

        with patch("main.Supervisor", side_effect=_fake_supervisor), patch("main._logger") as logger:
            code = await main._run(
                [
                    "--checkpoint-path",
                    str(tmp_path / "state.json"),
                    "--queue-maxsize",
                    "4",
                    "--queue-policy",
                    "drop_oldest",
                ]
            )

        assert code == 0
        warning_args = logger.warning.call_args.args
        assert "dropped %d events" in warning_args[0]
        assert warning_args[1] == 3
        summary = logger.info.call_args.args
        assert summary[0].startswith("Shutdown complete")
        assert summary[2:4] == (12, 3)

    def test_main_exits_with_code(self):
        with patch("main._run", AsyncMock(return_value=0)):
            with pytest.raises(SystemExit) as exc_info:
                main.main([])
        assert exc_info.value.code == 0
