"""Configuration for pr-comments.

Loads ``.prcomments.toml`` from the project root (walking up to ``.git``),
validates with Pydantic, and provides defaults so zero-config still works.

Token resolution priority (first non-empty wins):
1. ``github_token`` in the config file
2. ``GH_TOKEN`` env var
3. ``GITHUB_TOKEN`` env var
4. ``gh auth token`` subprocess (reads local ``~/.config/gh/hosts.yml``, no network)
"""

from __future__ import annotations

import contextlib
import logging
import os
import subprocess  # noqa: S404
import tomllib
from collections.abc import Callable
from pathlib import Path
from typing import Any

import tomlkit
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".prcomments.toml"

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_GRAPHQL_URL = "https://api.github.com/graphql"

DEFAULT_HIGHLIGHT_COLOR = "rgba(255, 200, 0, 0.2)"
DEFAULT_COMMENT_ICON = "💬"

# Classic (ghp_), fine-grained (github_pat_), OAuth (gho_), user-to-server (ghu_),
# server-to-server (ghs_) and refresh (ghr_) tokens.
TOKEN_PREFIXES = ("ghp_", "github_pat_", "gho_", "ghu_", "ghs_", "ghr_")
_MIN_UNPREFIXED_TOKEN_LENGTH = 20


class Config(BaseModel):
    """Top-level pr-comments configuration."""

    model_config = ConfigDict(extra="ignore")

    github_token: str = Field(default="", description="GitHub token (prefer GH_TOKEN / GITHUB_TOKEN env vars)")
    auto_fetch: bool = Field(default=False, description="Fetch comments automatically on startup")
    highlight_color: str = Field(default=DEFAULT_HIGHLIGHT_COLOR, description="Background color of commented lines")
    comment_icon: str = Field(default=DEFAULT_COMMENT_ICON, description="Marker shown after commented lines")
    show_resolved: bool = Field(default=True, description="Whether resolved comments are annotated")
    refresh_interval: int = Field(default=0, ge=0, description="Auto-refresh interval in minutes (0 disables)")
    github_enterprise_url: str = Field(default="", description="GitHub Enterprise base URL, empty for github.com")
    request_timeout: float = Field(default=30.0, gt=0, description="Per-request network timeout in seconds")

    @property
    def api_base_url(self) -> str:
        """REST API root: github.com or ``<enterprise>/api/v3``."""
        if self.github_enterprise_url:
            return f"{self.github_enterprise_url.rstrip('/')}/api/v3"
        return DEFAULT_API_URL

    @property
    def graphql_url(self) -> str:
        """GraphQL endpoint: github.com or ``<enterprise>/api/graphql``."""
        if self.github_enterprise_url:
            return f"{self.github_enterprise_url.rstrip('/')}/api/graphql"
        return DEFAULT_GRAPHQL_URL


class TokenValidation(BaseModel):
    """Outcome of local token format validation."""

    valid: bool
    message: str | None = None


def validate_token(token: str | None) -> TokenValidation:
    """Check a token's format locally, without touching the network.

    Tokens with a known GitHub prefix are accepted as-is. Unprefixed tokens
    (older formats, enterprise tokens) must be at least 20 characters.
    """
    if not token or not token.strip():
        return TokenValidation(valid=False, message="GitHub token is empty")
    if token.startswith(TOKEN_PREFIXES):
        return TokenValidation(valid=True)
    if len(token) < _MIN_UNPREFIXED_TOKEN_LENGTH:
        return TokenValidation(valid=False, message="Token appears too short to be valid")
    return TokenValidation(valid=True)


def resolve_token(config: Config | None = None) -> str | None:
    """Resolve the GitHub token synchronously. Safe to run in a thread."""
    config = config or get_config()
    if config.github_token:
        logger.debug("GitHub token resolved from config file")
        return config.github_token

    token = os.environ.get("GH_TOKEN") or os.environ.get("GITHUB_TOKEN")
    if token:
        logger.debug("GitHub token resolved from env var")
        return token

    try:
        result = subprocess.run(
            ["gh", "auth", "token"],  # noqa: S607
            capture_output=True,
            text=True,
            check=False,
            timeout=5,
        )
        if result.returncode == 0 and result.stdout.strip():
            logger.debug("GitHub token resolved from gh auth token")
            return result.stdout.strip()
    except (FileNotFoundError, subprocess.TimeoutExpired, OSError):
        pass

    return None


def _collect_unknown_keys(data: dict[str, Any], model_cls: type[BaseModel] = Config) -> list[str]:
    """Return top-level keys in *data* that don't match any field in *model_cls*."""
    known = set(model_cls.model_fields)
    return [key for key in data if key not in known]


def _find_config_file(start: Path) -> Path | None:
    """Return the nearest ``.prcomments.toml`` at or above *start*.

    The search ends at the repository root: a directory holding ``.git`` is the
    last one examined.
    """
    directory = start.resolve()
    for candidate_dir in (directory, *directory.parents):
        candidate = candidate_dir / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
        if (candidate_dir / ".git").exists():
            break
    return None


def _parse_config_file(path: Path) -> tuple[Config, dict[str, Any]]:
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        msg = f"Invalid TOML in {path}: {exc}"
        raise ValueError(msg) from exc

    try:
        return Config.model_validate(data), data
    except ValidationError as exc:
        msg = f"Invalid config in {path}: {exc}"
        raise ValueError(msg) from exc


def load_config(cwd: str | Path | None = None) -> tuple[Config, Path | None]:
    """Load configuration from ``.prcomments.toml``.

    Walks up from *cwd* (defaulting to the current directory) looking for the
    config file. If not found, returns a ``Config`` with all defaults.

    Returns:
        (config, config_path). The path is needed by ``set_config`` to enable
        mtime-based hot-reload.

    Raises ``ValueError`` on invalid TOML or validation errors.
    """
    config_path = _find_config_file(Path(cwd) if cwd else Path.cwd())
    if config_path is None:
        logger.info("Using default settings, no %s found", CONFIG_FILENAME)
        return Config(), None

    logger.info("Reading settings from %s", config_path)
    config, data = _parse_config_file(config_path)
    for key in _collect_unknown_keys(data):
        logger.warning(
            "Ignoring unknown setting '%s' in %s; 'pr-comments config --update' comments it out",
            key,
            config_path,
        )
    return config, config_path


# -- Active config, re-read when the file's mtime moves -----------------------

ReloadCallback = Callable[[Config], None]


class _LiveConfig:
    """The config in effect plus the file it came from."""

    def __init__(self) -> None:
        self.config = Config()
        self.path: Path | None = None
        self.stamp: float | None = None
        self.listeners: list[ReloadCallback] = []

    def watch(self, config: Config, path: Path | None) -> None:
        self.config = config
        self.path = path
        self.stamp = _mtime(path)

    def _publish(self, config: Config) -> Config:
        self.config = config
        for listener in self.listeners:
            try:
                listener(config)
            except Exception:
                logger.exception("Reload listener %r raised", listener)
        return config

    def current(self) -> Config:
        if self.path is None:
            return self.config

        stamp = _mtime(self.path)
        if stamp is None:
            if self.stamp is None:
                return self.config
            logger.warning("%s was removed; reverting to default settings", self.path.name)
            self.stamp = None
            return self._publish(Config())

        if stamp == self.stamp:
            return self.config

        self.stamp = stamp
        try:
            config, _ = _parse_config_file(self.path)
        except ValueError as exc:
            logger.warning("Edited config rejected, still using the previous settings: %s", exc)
            return self.config
        logger.info("Reloaded settings from %s", self.path)
        return self._publish(config)


def _mtime(path: Path | None) -> float | None:
    if path is None:
        return None
    try:
        return path.stat().st_mtime
    except OSError:
        return None


_live = _LiveConfig()


def get_config() -> Config:
    """Return the config in effect, re-reading the file if it changed on disk.

    A removed file means defaults. An edit that fails to parse or validate is
    logged and ignored until the file changes again.
    """
    return _live.current()


def set_config(config: Config, *, config_path: Path | None = None) -> None:
    """Install *config*; with *config_path*, later ``get_config()`` calls follow edits to it."""
    _live.watch(config, config_path)


def get_config_path() -> Path | None:
    return _live.path


def register_reload_callback(callback: ReloadCallback) -> Callable[[], None]:
    """Call *callback* with the new ``Config`` whenever the file is re-read.

    Returns a function that unregisters *callback*; calling it twice is harmless.
    """
    _live.listeners.append(callback)

    def unregister() -> None:
        with contextlib.suppress(ValueError):
            _live.listeners.remove(callback)

    return unregister


def clear_reload_callbacks() -> None:
    _live.listeners.clear()


# -- ``pr-comments config --init / --update`` ---------------------------------

_TEMPLATE_HEADER = """\
# pr-comments settings. Every key is optional; the values below are the defaults.
# The file is looked up from the working directory upwards to the repository root.
#
# Keep the token out of this file: set GH_TOKEN / GITHUB_TOKEN or run 'gh auth login'.
"""

# (setting, template line); the setting name decides whether --update appends the line.
_TEMPLATE_KEYS: list[tuple[str, str]] = [
    ("auto_fetch", "auto_fetch = false                # Fetch comments on startup"),
    ("highlight_color", 'highlight_color = "rgba(255, 200, 0, 0.2)"  # Background of commented lines'),
    ("comment_icon", 'comment_icon = "💬"               # Marker after commented lines'),
    ("show_resolved", "show_resolved = true              # Annotate comments in resolved threads"),
    ("refresh_interval", "refresh_interval = 0              # Auto-refresh interval in minutes (0 = off)"),
    ("github_enterprise_url", 'github_enterprise_url = ""        # e.g. "https://github.example.com"'),
    ("request_timeout", "request_timeout = 30.0            # Per-request timeout in seconds"),
]

DEFAULT_CONFIG_TEMPLATE = _TEMPLATE_HEADER + "\n" + "\n".join(line for _, line in _TEMPLATE_KEYS) + "\n"


def init_config(cwd: Path | None = None) -> Path:
    """Write the default template to ``.prcomments.toml`` in *cwd*.

    An existing file is left alone and the process exits with status 1.
    """
    target = (cwd or Path.cwd()) / CONFIG_FILENAME
    if target.exists():
        print(f"Error: {target} exists; run 'pr-comments config --update' to add new settings")  # noqa: T201
        raise SystemExit(1)
    target.write_text(DEFAULT_CONFIG_TEMPLATE, encoding="utf-8")
    print(f"Wrote {target}")  # noqa: T201
    return target


def _toml_value(value: Any) -> str:
    """Render *value* as a single-line TOML value for a comment."""
    if isinstance(value, dict):
        table = tomlkit.inline_table()
        table.update(value)
        return table.as_string()
    rendered = tomlkit.item(value).as_string()
    return rendered if "\n" not in rendered else repr(value)


def _comment_out_unknown_keys(target: Path) -> list[str]:
    """Turn unknown top-level settings into ``# DEPRECATED:`` comments, keeping layout."""
    doc = tomlkit.parse(target.read_text(encoding="utf-8"))
    data = doc.unwrap()
    unknown = _collect_unknown_keys(data)
    for key in unknown:
        value = data[key]
        doc.remove(key)
        doc.add(tomlkit.comment(f"DEPRECATED: {key} = {_toml_value(value)}"))
    if unknown:
        target.write_text(doc.as_string(), encoding="utf-8")
    return unknown


def update_config(cwd: Path | None = None) -> tuple[Path, list[str], list[str]]:
    """Bring an existing ``.prcomments.toml`` in line with the current settings.

    Unknown settings are commented out and missing ones are appended with their
    defaults. Exits with status 1 when there is no file to update.

    Returns:
        (config path, added keys, deprecated keys commented out).
    """
    target = (cwd or Path.cwd()) / CONFIG_FILENAME
    if not target.exists():
        print(f"Error: no {CONFIG_FILENAME} in {target.parent}; run 'pr-comments config --init' first")  # noqa: T201
        raise SystemExit(1)

    deprecated = _comment_out_unknown_keys(target)
    for key in deprecated:
        print(f"  # {key} (unknown, commented out)")  # noqa: T201

    text = target.read_text(encoding="utf-8")
    present = tomllib.loads(text)
    added = [key for key, _ in _TEMPLATE_KEYS if key not in present]
    if added:
        lines = [line for key, line in _TEMPLATE_KEYS if key in added]
        separator = "" if text.endswith("\n") else "\n"
        block = "\n# Added by 'pr-comments config --update'\n" + "\n".join(lines) + "\n"
        target.write_text(text + separator + block, encoding="utf-8")
        for key in added:
            print(f"  + {key}")  # noqa: T201

    if not added and not deprecated:
        print(f"{CONFIG_FILENAME} is up to date")  # noqa: T201
    return target, added, deprecated
