import dataclasses
from pathlib import Path

import yaml

HABITGRID_DIR = Path.home() / ".habitgrid"
DB_PATH = HABITGRID_DIR / "habitgrid.db"
CONFIG_PATH = HABITGRID_DIR / "config.yaml"
LOG_FILE = HABITGRID_DIR / "habitgrid.log"
BACKUP_DIR = HABITGRID_DIR / "backups"

WRITE_ERROR_POLICIES = ("refetch", "rollback")
EFFICIENCY_BASES = ("all", "due")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


class Config:
    """Single-instance config manager. Load once, cache in memory."""

    _instance: "Config | None" = None
    _data: dict[str, object]

    def __new__(cls) -> "Config":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._data = {}
            cls._instance._load()
        return cls._instance

    def _load(self) -> None:
        """Load config from disk."""
        if not CONFIG_PATH.exists():
            self._data = {}
            return
        try:
            with CONFIG_PATH.open() as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError:
            loaded = None
        self._data = loaded if isinstance(loaded, dict) else {}

    def _save(self) -> None:
        """Persist config to disk."""
        CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
        with CONFIG_PATH.open("w") as f:
            yaml.dump(self._data, f, default_flow_style=False, allow_unicode=True)

    def reload(self) -> None:
        self._load()

    def get(self, key: str, default: object = None) -> object:
        """Get config value."""
        return self._data.get(key, default)

    def set(self, key: str, value: object) -> None:
        """Set config value and persist."""
        self._data[key] = value
        self._save()


_config = Config()


@dataclasses.dataclass(frozen=True)
class Settings:
    owner: str = "local"
    weekly_window: int = 7
    top_limit: int = 10
    streak_lookback: int = 100
    efficiency_basis: str = "all"
    on_write_error: str = "refetch"


_DEFAULTS = Settings()


def _positive_int(key: str, default: int) -> int:
    val = _config.get(key)
    try:
        n = int(val)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    return n if n > 0 else default


def _choice(key: str, choices: tuple[str, ...], default: str) -> str:
    val = _config.get(key)
    text = str(val).strip().lower() if val is not None else ""
    return text if text in choices else default


def get_owner() -> str:
    """Owner id scoping every gateway call. One local user by default."""
    val = _config.get("owner")
    return str(val).strip() if val else _DEFAULTS.owner


def set_owner(owner: str) -> None:
    _config.set("owner", owner)


def get_streak_lookback() -> int:
    """How many recent completion events the streak query reads."""
    return _positive_int("streak_lookback", _DEFAULTS.streak_lookback)


def get_weekly_window() -> int:
    return _positive_int("weekly_window", _DEFAULTS.weekly_window)


def get_top_limit() -> int:
    return _positive_int("top_limit", _DEFAULTS.top_limit)


def get_efficiency_basis() -> str:
    return _choice("efficiency_basis", EFFICIENCY_BASES, _DEFAULTS.efficiency_basis)


def get_write_error_policy() -> str:
    return _choice("on_write_error", WRITE_ERROR_POLICIES, _DEFAULTS.on_write_error)


def load_settings() -> Settings:
    return Settings(
        owner=get_owner(),
        weekly_window=get_weekly_window(),
        top_limit=get_top_limit(),
        streak_lookback=get_streak_lookback(),
        efficiency_basis=get_efficiency_basis(),
        on_write_error=get_write_error_policy(),
    )


def get_log_level() -> str:
    val = _config.get("log_level")
    level = str(val).strip().upper() if val else ""
    return level if level in _LOG_LEVELS else "INFO"
