"""Configuration discovery and loading.

Kindling keeps its state in one directory, ``$KINDLING_HOME`` or
``~/.kindling``::

    ~/.kindling/
        config.toml     # accounts, rooms, plugins, hooks
        kindling.pid    # present while the daemon runs
        kindling.log    # daemon log

Config file format (``config.toml``)::

    [default]
    account = "acme"
    room = "watercooler"

    [daemon]
    interval = 5.0

    [[accounts]]
    subdomain = "acme"
    token = "0123456789abcdef"
    rooms = ["watercooler", "ops"]

    [plugins]
    enabled = ["transcript", "sound"]

    [plugins.sound]
    file = "~/sounds/ping.wav"

    [[handlers]]
    event = "TextMessage"
    match = "(?i)deploy"
    run = "notify-send '{user}' '{body}'"
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import cast

from pydantic import ValidationError

from kindling.errors import ConfigError, ConfigMissingError
from kindling.models import AccountConfig, KindlingConfig

HOME_ENV = "KINDLING_HOME"
CONFIG_NAME = "config.toml"
PID_NAME = "kindling.pid"
LOG_NAME = "kindling.log"


@dataclass(frozen=True)
class Paths:
    """Filesystem locations used by the CLI and the daemon."""

    home: Path
    config: Path
    pid: Path
    log: Path


def kindling_home() -> Path:
    """Resolve the state directory: ``$KINDLING_HOME`` or ``~/.kindling``."""
    override = os.environ.get(HOME_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".kindling"


def resolve_paths(config_override: Path | None = None) -> Paths:
    """Compute all paths, honoring a ``--config`` override."""
    home = kindling_home()
    return Paths(
        home=home,
        config=config_override or home / CONFIG_NAME,
        pid=home / PID_NAME,
        log=home / LOG_NAME,
    )


def load_config_file(path: Path) -> dict[str, object]:
    """Parse the TOML file at *path*.

    Raises :class:`~kindling.errors.ConfigMissingError` when the file
    does not exist and :class:`~kindling.errors.ConfigError` when it
    is not valid TOML.
    """
    if not path.exists():
        raise ConfigMissingError(path)
    try:
        return tomllib.loads(path.read_text())
    except tomllib.TOMLDecodeError as exc:
        msg = f"Failed to parse {path}:\n{exc}"
        raise ConfigError(msg) from exc


def _section(raw: dict[str, object], name: str) -> dict[str, object]:
    value: object = raw.get(name, {})
    if not isinstance(value, dict):
        msg = f"[{name}] must be a table"
        raise ConfigError(msg)
    return cast("dict[str, object]", value)


def _table_list(raw: dict[str, object], name: str) -> list[dict[str, object]]:
    value: object = raw.get(name, [])
    if not isinstance(value, list) or not all(isinstance(v, dict) for v in value):
        msg = f"[[{name}]] must be an array of tables"
        raise ConfigError(msg)
    return cast("list[dict[str, object]]", value)


def extract_config_fields(raw: dict[str, object]) -> dict[str, object]:
    """Map the TOML layout onto :class:`KindlingConfig` field names."""
    default = _section(raw, "default")
    daemon = _section(raw, "daemon")
    plugins = _section(raw, "plugins")

    enabled: object = plugins.get("enabled", [])
    if not isinstance(enabled, list):
        raise ConfigError("[plugins] enabled must be a list of plugin names")
    plugin_settings = {k: v for k, v in plugins.items() if isinstance(v, dict)}

    fields: dict[str, object] = {
        "accounts": _table_list(raw, "accounts"),
        "default_account": default.get("account"),
        "default_room": default.get("room"),
        "plugins": tuple(str(name) for name in enabled),
        "plugin_settings": plugin_settings,
        "hooks": _table_list(raw, "handlers"),
    }
    for key in ("interval", "max_backoff"):
        if key in daemon:
            fields[key] = daemon[key]
    return fields


def load_config(path: Path) -> KindlingConfig:
    """Load and validate the configuration file at *path*."""
    raw = load_config_file(path)
    try:
        return KindlingConfig.model_validate(extract_config_fields(raw))
    except ValidationError as exc:
        msg = f"Invalid configuration in {path}:\n{exc}"
        raise ConfigError(msg) from exc


def _toml_string(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_config_toml(
    accounts: list[AccountConfig],
    *,
    default_account: str | None = None,
    default_room: str | None = None,
    plugins: list[str] | None = None,
) -> str:
    """Build ``config.toml`` content from setup answers."""
    lines: list[str] = []
    if default_account or default_room:
        lines.append("[default]")
        if default_account:
            lines.append(f"account = {_toml_string(default_account)}")
        if default_room:
            lines.append(f"room = {_toml_string(default_room)}")
        lines.append("")
    for account in accounts:
        rooms = ", ".join(_toml_string(r) for r in account.rooms)
        lines.append("[[accounts]]")
        lines.append(f"subdomain = {_toml_string(account.subdomain)}")
        lines.append(f"token = {_toml_string(account.token)}")
        lines.append(f"ssl = {'true' if account.ssl else 'false'}")
        lines.append(f"rooms = [{rooms}]")
        lines.append("")
    if plugins:
        names = ", ".join(_toml_string(p) for p in plugins)
        lines.append("[plugins]")
        lines.append(f"enabled = [{names}]")
        lines.append("")
    return "\n".join(lines)


def write_config(path: Path, content: str) -> None:
    """Write *content* to *path*, readable by the owner only (it holds tokens)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    try:
        tmp.write_text(content)
        tmp.chmod(0o600)
        tmp.replace(path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
