"""Unit tests for impl_planner.config."""

import json
from pathlib import Path

import pytest

from impl_planner.config import (
    ensure_initialized,
    is_initialized,
    load_config,
    save_config,
)
from impl_planner.models import PlannerConfig


class TestSaveLoadConfig:
    def test_save_creates_planner_dir(self, tmp_path: Path) -> None:
        path = save_config(PlannerConfig(), tmp_path)
        assert path.exists()
        assert (tmp_path / ".impl-planner").is_dir()

    def test_roundtrip(self, tmp_path: Path) -> None:
        config = PlannerConfig(
            implications_dirs=["tests/implications", "shared/implications"],
            default_status="registered",
            max_bfs_iterations=50,
            platform_prerequisites={"dancer": {"state": "dancer_logged_in", "check_field": "dancer.loggedIn"}},
            runner_command=["npx", "playwright", "test", "{test_file}"],
            runner_timeout=60,
        )
        save_config(config, tmp_path)
        loaded = load_config(tmp_path)
        assert loaded == config

    def test_partial_file_uses_defaults(self, tmp_path: Path) -> None:
        (tmp_path / ".impl-planner").mkdir()
        (tmp_path / ".impl-planner" / "config.json").write_text(json.dumps({"data_path": "data.json"}))
        loaded = load_config(tmp_path)
        assert loaded.data_path == "data.json"
        assert loaded.default_status == "initial"
        assert loaded.platform_aliases["playwright"] == "web"
        assert loaded.runner_command == []

    def test_load_nonexistent(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path)


class TestInitialized:
    def test_not_initialized(self, tmp_path: Path) -> None:
        assert not is_initialized(tmp_path)
        with pytest.raises(RuntimeError, match="impl-planner init"):
            ensure_initialized(tmp_path)

    def test_initialized(self, tmp_path: Path) -> None:
        save_config(PlannerConfig(), tmp_path)
        assert is_initialized(tmp_path)
        assert ensure_initialized(tmp_path).version == "0.1.0"
