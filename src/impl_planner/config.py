"""Configuration management for impl-planner projects."""

from __future__ import annotations

import json
from pathlib import Path

from impl_planner.models import DEFAULT_STATUS, PlannerConfig

PLANNER_DIR = ".impl-planner"
CONFIG_FILE = "config.json"


def _config_path(project_root: Path) -> Path:
    return project_root / PLANNER_DIR / CONFIG_FILE


def save_config(config: PlannerConfig, project_root: Path) -> Path:
    """Save project config to .impl-planner/config.json. Returns the config path."""
    planner_dir = project_root / PLANNER_DIR
    planner_dir.mkdir(parents=True, exist_ok=True)
    path = _config_path(project_root)
    data = {
        "version": config.version,
        "registry_path": config.registry_path,
        "implications_dirs": config.implications_dirs,
        "discovery_cache_path": config.discovery_cache_path,
        "data_path": config.data_path,
        "default_status": config.default_status,
        "max_bfs_iterations": config.max_bfs_iterations,
        "platform_aliases": config.platform_aliases,
        "platform_prerequisites": config.platform_prerequisites,
        "runner_command": config.runner_command,
        "runner_timeout": config.runner_timeout,
        "verbose": config.verbose,
    }
    path.write_text(json.dumps(data, indent=2, default=str) + "\n")
    return path


def load_config(project_root: Path) -> PlannerConfig:
    """Load project config from .impl-planner/config.json."""
    path = _config_path(project_root)
    if not path.exists():
        raise FileNotFoundError(f"No config found at {path}")
    data = json.loads(path.read_text())
    defaults = PlannerConfig()
    return PlannerConfig(
        version=data.get("version", defaults.version),
        registry_path=data.get("registry_path", defaults.registry_path),
        implications_dirs=data.get("implications_dirs", defaults.implications_dirs),
        discovery_cache_path=data.get("discovery_cache_path", defaults.discovery_cache_path),
        data_path=data.get("data_path", defaults.data_path),
        default_status=data.get("default_status", DEFAULT_STATUS),
        max_bfs_iterations=int(data.get("max_bfs_iterations", defaults.max_bfs_iterations)),
        platform_aliases=data.get("platform_aliases", defaults.platform_aliases),
        platform_prerequisites=data.get("platform_prerequisites", {}),
        runner_command=data.get("runner_command", []),
        runner_timeout=int(data.get("runner_timeout", defaults.runner_timeout)),
        verbose=data.get("verbose", False),
    )


def is_initialized(project_root: Path) -> bool:
    """Check if the project is initialized for impl-planner."""
    return _config_path(project_root).exists()


def ensure_initialized(project_root: Path) -> PlannerConfig:
    """Ensure the project is initialized. Raises if not."""
    if not is_initialized(project_root):
        raise RuntimeError(
            "Project is not initialized. Run `impl-planner init` first."
        )
    return load_config(project_root)
