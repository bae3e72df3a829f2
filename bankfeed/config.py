"""YAML configuration loader for bankfeed.

Loads the seed config files from the config/ directory:
  refresh.yaml   dashboard refresh debounce delays
  columns.yaml   header aliases for the generic fallback parser
  ingest.yaml    decoding fallbacks and drop-folder watcher settings
"""

from pathlib import Path

import yaml

from bankfeed.dashboard.refresh import RefreshSettings
from bankfeed.parsers.generic import DEFAULT_COLUMN_ALIASES
from bankfeed.parsers.processor import DEFAULT_FALLBACK_ENCODINGS


class Config:
    """Loads and provides access to all YAML configuration files."""

    def __init__(self, config_dir: Path | str = "config"):
        self.config_dir = Path(config_dir)
        if not self.config_dir.is_dir():
            raise FileNotFoundError(f"Config directory not found: {self.config_dir}")

        self._refresh: dict | None = None
        self._columns: dict | None = None
        self._ingest: dict | None = None

    def _load(self, filename: str) -> dict | list:
        path = self.config_dir / filename
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {path}: {e}") from e
        if data is None:
            raise ValueError(f"Empty config file: {path}")
        return data

    @property
    def refresh(self) -> dict:
        if self._refresh is None:
            data = self._load("refresh.yaml")
            self._refresh = data.get("refresh", data)
        return self._refresh

    @property
    def refresh_settings(self) -> RefreshSettings:
        """Debounce delays; unknown keys raise ValueError."""
        return RefreshSettings.from_dict(self.refresh)

    @property
    def columns(self) -> dict:
        if self._columns is None:
            self._columns = self._load("columns.yaml")
        return self._columns

    @property
    def column_aliases(self) -> dict[str, list[str]]:
        """Canonical field → header aliases, merged over the built-in defaults.

        A field listed in columns.yaml replaces the default alias list for
        that field; unlisted fields keep their defaults.
        """
        aliases = {k: list(v) for k, v in DEFAULT_COLUMN_ALIASES.items()}
        for field_name, names in self.columns.get("aliases", {}).items():
            if field_name not in aliases:
                raise ValueError(f"Unknown column alias field in columns.yaml: {field_name}")
            if isinstance(names, str):
                names = [names]
            aliases[field_name] = [str(n) for n in names]
        return aliases

    @property
    def ingest(self) -> dict:
        if self._ingest is None:
            self._ingest = self._load("ingest.yaml")
        return self._ingest

    @property
    def fallback_encodings(self) -> list[str]:
        return list(self.ingest.get("fallback_encodings", DEFAULT_FALLBACK_ENCODINGS))

    @property
    def watcher(self) -> dict:
        """Drop-folder watcher settings: stability_seconds, check_interval, poll_interval."""
        return self.ingest.get("watcher", {})
