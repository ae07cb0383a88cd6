"""Connector settings file: load, save and first-run setup."""

import json
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, field

from remote_link import ConnectionConfig, DEFAULT_SERVER_URL
from usi_engine import EngineConfig

logger = logging.getLogger("connector_config")

CONFIG_FILENAME = "config.json"

DEFAULT_OPTIONS = {
    "USI_Hash": 1024,
    "Threads": 4,
    "MultiPV": 5,
}


class ConfigError(Exception):
    """The settings file is unreadable or incomplete."""


@dataclass
class Settings:
    """Persisted connector settings, keyed as in config.json."""

    engine_path: str
    api_key: str
    server_url: str | None = None
    engine_options: dict[str, str | int] = field(
        default_factory=lambda: dict(DEFAULT_OPTIONS)
    )

    def engine_config(self) -> EngineConfig:
        return EngineConfig(path=self.engine_path, options=self.engine_options)

    def connection_config(self) -> ConnectionConfig:
        return ConnectionConfig(
            url=self.server_url or DEFAULT_SERVER_URL,
            token=self.api_key,
        )

    def to_dict(self) -> dict:
        data: dict = {
            "enginePath": self.engine_path,
            "apiKey": self.api_key,
        }
        if self.server_url:
            data["serverUrl"] = self.server_url
        data["engineOptions"] = dict(self.engine_options)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Settings":
        """Build settings from a decoded config.json document.

        Raises:
            ConfigError: If a required key is missing or has the wrong type.
        """
        if not isinstance(data, dict):
            raise ConfigError("settings must be a JSON object")
        for key in ("enginePath", "apiKey"):
            if not isinstance(data.get(key), str) or not data[key]:
                raise ConfigError(f"missing or invalid '{key}'")
        options = data.get("engineOptions")
        if options is None:
            options = {}
        if not isinstance(options, dict):
            raise ConfigError("'engineOptions' must be an object")
        server_url = data.get("serverUrl") or None
        if server_url is not None and not isinstance(server_url, str):
            raise ConfigError("'serverUrl' must be a string")
        return cls(
            engine_path=data["enginePath"],
            api_key=data["apiKey"],
            server_url=server_url,
            engine_options=dict(options),
        )


def load_settings(path: str) -> Settings:
    """Read settings from path.

    Raises:
        ConfigError: If the file cannot be read or parsed.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        raise ConfigError(f"could not read {path}: {e}") from e
    return Settings.from_dict(data)


def save_settings(settings: Settings, path: str) -> None:
    """Write settings to path as indented JSON.

    Raises:
        ConfigError: If the file cannot be written.
    """
    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(settings.to_dict(), f, indent=2, ensure_ascii=False)
            f.write("\n")
    except OSError as e:
        raise ConfigError(f"could not write {path}: {e}") from e


def normalize_engine_path(raw: str) -> str:
    """Strip drag-and-drop quotes and use forward slashes."""
    path = raw.strip()
    if len(path) >= 2 and path[0] == path[-1] and path[0] in "\"'":
        path = path[1:-1]
    return path.replace("\\", "/")


def run_setup_wizard(
    path: str,
    ask: Callable[[str], str] = input,
    say: Callable[[str], None] = print,
) -> Settings:
    """Interactively collect the API key and engine path, then save them.

    Re-prompts until the key is non-empty and the engine path names an
    existing file. Engine options start from DEFAULT_OPTIONS.
    """
    say("No settings file found, starting first-run setup.")

    api_key = ""
    while not api_key:
        api_key = ask("[1/2] Paste the API key shown on the web page and press Enter:\n> ").strip()

    engine_path = ""
    while not engine_path:
        say("[2/2] Drag and drop the shogi engine executable here and press Enter:")
        candidate = normalize_engine_path(ask("> "))
        if candidate and os.path.isfile(candidate):
            engine_path = candidate
        else:
            say("Error: not an engine executable, or the file does not exist.")

    settings = Settings(engine_path=engine_path, api_key=api_key)
    save_settings(settings, path)
    logger.info("Settings saved to %s", path)
    say(f"Settings saved to '{path}'. The connector will use them from now on.")
    return settings
