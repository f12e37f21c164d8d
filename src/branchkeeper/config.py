"""Configuration handling for branchkeeper.

Defaults can be overridden by a ``.branchkeeperrc`` file (JSON or YAML) in
the repository, and command line values override both.
"""

import json
import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Optional

import yaml

from branchkeeper.logging_config import get_logger

CONFIG_FILES = (
    ".branchkeeperrc.json",
    ".branchkeeperrc.yaml",
    ".branchkeeperrc.yml",
    ".branchkeeperrc",
)

# Keys as written in rc files shared with the Node.js tool
CAMEL_CASE_KEYS = {
    "protectedBranches": "protected_branches",
    "listOnly": "list_only",
    "ffOnly": "ff_only",
    "mergeIgnore": "merge_ignore",
    "fetchIgnore": "fetch_ignore",
    "fetchForce": "fetch_force",
    "fetchRemote": "fetch_remote",
    "autoStash": "auto_stash",
    "skipUnreachableRemotes": "skip_unreachable_remotes",
}

LIST_FIELDS = ("protected_branches", "remotes", "ignore", "merge_ignore", "fetch_ignore")
UNION_FIELDS = ("ignore", "merge_ignore", "fetch_ignore")


@dataclass
class Config:
    """Configuration for branchkeeper with validation."""

    # Branch filtering
    protected_branches: list[str] = field(default_factory=lambda: ["main", "master", "develop"])
    remotes: list[str] = field(default_factory=list)  # empty means every remote an upstream names
    ignore: list[str] = field(default_factory=list)

    # clean
    silent: bool = False
    list_only: bool = False
    confirm: bool = True
    force: bool = False
    skip_unreachable_remotes: bool = False

    # merge
    ff_only: bool = True
    merge_ignore: list[str] = field(default_factory=list)

    # fetch
    fetch_remote: str = "origin"
    fetch_ignore: list[str] = field(default_factory=list)
    fetch_force: bool = False

    # Execution
    auto_stash: bool = False
    workers: int = 1
    verbose: bool = False
    debug: bool = False

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        self._validate_lists()
        self._validate_workers()
        self._validate_fetch_remote()

    def _validate_lists(self) -> None:
        for name in LIST_FIELDS:
            value = getattr(self, name)
            if isinstance(value, str):
                value = [value]
            if not isinstance(value, (list, tuple)) or not all(isinstance(item, str) for item in value):
                raise ValueError(f"{name} must be a list of branch names, got {value!r}")
            setattr(self, name, [item.strip() for item in value if item.strip()])

    def _validate_workers(self) -> None:
        if not isinstance(self.workers, int) or isinstance(self.workers, bool) or self.workers < 1:
            raise ValueError(f"workers must be a positive integer, got {self.workers!r}")

    def _validate_fetch_remote(self) -> None:
        if not isinstance(self.fetch_remote, str) or not self.fetch_remote.strip():
            raise ValueError("fetch_remote cannot be empty")
        self.fetch_remote = self.fetch_remote.strip()

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> "Config":
        """Create a Config from a parsed rc file, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        normalized = {CAMEL_CASE_KEYS.get(key, key): value for key, value in config_dict.items()}
        return cls(**{key: value for key, value in normalized.items() if key in known})

    def merged(self, **overrides: Any) -> "Config":
        """Return a copy with command line values applied.

        ``None`` means "not given on the command line". Ignore lists are
        combined with the configured ones, everything else replaces them.
        """
        changes: dict[str, Any] = {}
        for key, value in overrides.items():
            if value is None:
                continue
            if key in UNION_FIELDS:
                value = list(dict.fromkeys([*value, *getattr(self, key)]))
            changes[key] = value
        return replace(self, **changes)


def _parse(path: Path) -> Any:
    content = path.read_text(encoding="utf-8")
    if path.suffix in (".yaml", ".yml"):
        return yaml.safe_load(content)
    return json.loads(content)


def load_config(
    path: Optional[Path] = None,
    directory: Optional[Path] = None,
    logger: Optional[logging.Logger] = None,
) -> Config:
    """Load configuration from disk.

    Args:
        path: Explicit config file; otherwise the standard names are searched
        directory: Where to look for the standard names, the cwd by default
        logger: Where to report unusable files

    Returns:
        The first usable file's configuration, or the built-in defaults. A
        malformed file is reported and never aborts the command.
    """
    logger = logger or get_logger(__name__)
    base = directory or Path.cwd()
    candidates = [path if path.is_absolute() else base / path] if path else [base / name for name in CONFIG_FILES]

    for candidate in candidates:
        if not candidate.is_file():
            continue
        try:
            document = _parse(candidate)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, yaml.YAMLError) as err:
            logger.warning("Failed to load config file %s: %s", candidate, err)
            continue
        if document is None:
            document = {}
        if not isinstance(document, dict):
            logger.warning("Ignoring config file %s: expected a mapping", candidate)
            continue
        try:
            config = Config.from_dict(document)
        except (TypeError, ValueError) as err:
            logger.warning("Ignoring invalid config file %s: %s", candidate, err)
            continue
        logger.info("Loaded config file %s", candidate)
        return config

    logger.debug("No config file found, using defaults")
    return Config()
