"""
Configuration for the vault package.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import dotenv_values


DEFAULT_VAULT_NAME = ".agent_shield"
SNAPSHOTS_DIR = "snapshots"
INDEX_FILE = "index.json"
RESTORE_LOCK_FILE = "restore.lock"
ENV_FILE = "shield.env"

DEFAULT_EXCLUDE_PATTERNS = [
    ".git",
    ".git/**",
    "node_modules",
    "node_modules/**",
    DEFAULT_VAULT_NAME,
    f"{DEFAULT_VAULT_NAME}/**",
    "**/*.log",
    "**/*.tmp",
    "**/*.swp",
    "**/*.swo",
    "**/~*",
    "**/.DS_Store",
    "**/Thumbs.db",
    "**/__pycache__",
    "**/__pycache__/**",
    "**/*.pyc",
    "**/dist",
    "**/dist/**",
    "**/build",
    "**/build/**",
    "**/.next",
    "**/.next/**",
    "**/.nuxt",
    "**/.nuxt/**",
    "**/coverage",
    "**/coverage/**",
    "**/.cache",
    "**/.cache/**",
]


@dataclass
class ShieldConfig:
    """
    Configuration for one protected workspace.

    Attributes:
        workspace: Root of the protected directory tree
        vault_dir: Directory holding the index and blob store
        exclude_patterns: Resolved glob patterns of paths never backed up
        max_backup_age_days: Default age limit used by retention
        restore_lock_timeout_s: How long a restore waits for another restore
    """
    workspace: Path
    vault_dir: Optional[Path] = None
    exclude_patterns: List[str] = field(
        default_factory=lambda: list(DEFAULT_EXCLUDE_PATTERNS)
    )
    max_backup_age_days: int = 7
    restore_lock_timeout_s: float = 10.0

    def __post_init__(self):
        if isinstance(self.workspace, str):
            self.workspace = Path(self.workspace)
        self.workspace = self.workspace.resolve()
        if self.vault_dir is None:
            self.vault_dir = self.workspace / DEFAULT_VAULT_NAME
        elif isinstance(self.vault_dir, str):
            self.vault_dir = Path(self.vault_dir)

    @property
    def snapshots_dir(self) -> Path:
        return self.vault_dir / SNAPSHOTS_DIR

    @property
    def index_path(self) -> Path:
        return self.vault_dir / INDEX_FILE

    @property
    def restore_lock_path(self) -> Path:
        return self.vault_dir / RESTORE_LOCK_FILE

    @classmethod
    def from_env(
        cls,
        workspace: Path,
        extra_patterns: Optional[List[str]] = None,
    ) -> "ShieldConfig":
        """
        Build a config, overlaying SHIELD_* settings.

        Values come from ``<vault>/shield.env`` first and are then overridden
        by the process environment.

        Args:
            workspace: Workspace root
            extra_patterns: Patterns merged after the defaults (e.g. from
                the workspace ignore file)

        Returns:
            The resolved configuration
        """
        config = cls(workspace=Path(workspace))
        env = _load_env(config.vault_dir / ENV_FILE)

        if env.get("SHIELD_VAULT_DIR"):
            config.vault_dir = Path(env["SHIELD_VAULT_DIR"]).expanduser()
        if env.get("SHIELD_MAX_BACKUP_AGE_DAYS"):
            config.max_backup_age_days = int(env["SHIELD_MAX_BACKUP_AGE_DAYS"])
        if env.get("SHIELD_RESTORE_LOCK_TIMEOUT"):
            config.restore_lock_timeout_s = float(env["SHIELD_RESTORE_LOCK_TIMEOUT"])
        if env.get("SHIELD_EXCLUDE"):
            extra = [p.strip() for p in env["SHIELD_EXCLUDE"].split(",") if p.strip()]
            config.exclude_patterns.extend(extra)

        for pattern in extra_patterns or []:
            if pattern not in config.exclude_patterns:
                config.exclude_patterns.append(pattern)

        return config


def _load_env(env_file: Path) -> Dict[str, str]:
    """Merge the vault env file with os.environ (environment wins)."""
    values: Dict[str, str] = {}
    if env_file.exists():
        values.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
    values.update({k: v for k, v in os.environ.items() if k.startswith("SHIELD_")})
    return values
