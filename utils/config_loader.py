from jsonschema import Draft7Validator
from pathlib import Path
import copy, json, os

DEFAULT_CONFIG_PATH = Path.home() / ".openclaw-manager" / "manager_config.json"

DEFAULT_CONFIG = {
    "host": "127.0.0.1",
    "port": 0,
    "open_browser": True,
    "state_root": str(Path.home()),
    "openclaw_bin": "openclaw",
    "base_port": 28789,
    "provider_base_url": "https://code.evolink.ai",
    "command_timeout": 15,
    "probe_timeout": 0.8,
    "ticket_ttl": 60,
    "ticket_sweep_interval": 60,
    "index_html": None,
    "log": {"level": "INFO", "file": None},
    "auth": {
        "enabled": None,
        "config_file": str(Path.home() / ".openclaw-manager" / "auth.json"),
        "max_failures": 5,
        "window_seconds": 300,
        "cookie_name": "openclaw_manager_session",
        "cookie_max_age": 2592000,
    },
}

CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "host": {"type": "string"},
        "port": {"type": "integer", "minimum": 0, "maximum": 65535},
        "open_browser": {"type": "boolean"},
        "state_root": {"type": "string"},
        "openclaw_bin": {"type": "string", "minLength": 1},
        "base_port": {"type": "integer", "minimum": 1, "maximum": 65535},
        "provider_base_url": {"type": "string"},
        "command_timeout": {"type": "number", "exclusiveMinimum": 0},
        "probe_timeout": {"type": "number", "exclusiveMinimum": 0},
        "ticket_ttl": {"type": "number", "exclusiveMinimum": 0},
        "ticket_sweep_interval": {"type": "number", "exclusiveMinimum": 0},
        "index_html": {"type": ["string", "null"]},
        "log": {
            "type": "object",
            "properties": {
                "level": {
                    "type": "string",
                    "enum": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                },
                "file": {"type": ["string", "null"]},
            },
        },
        "auth": {
            "type": "object",
            "properties": {
                "enabled": {"type": ["boolean", "null"]},
                "config_file": {"type": "string"},
                "max_failures": {"type": "integer", "minimum": 1},
                "window_seconds": {"type": "number", "exclusiveMinimum": 0},
                "cookie_name": {"type": "string", "minLength": 1},
                "cookie_max_age": {"type": "integer", "minimum": 0},
            },
        },
    },
}

ENV_OVERRIDES = {
    "MANAGER_HOST": ("host", str),
    "MANAGER_PORT": ("port", int),
    "MANAGER_STATE_ROOT": ("state_root", str),
    "OPENCLAW_BIN": ("openclaw_bin", str),
}

LOOPBACK_HOSTS = {"127.0.0.1", "localhost", "::1"}


class ConfigError(ValueError):
    pass


def _fill_defaults(config, defaults):
    for key, value in defaults.items():
        if key not in config:
            config[key] = copy.deepcopy(value)
        elif isinstance(value, dict) and isinstance(config[key], dict):
            _fill_defaults(config[key], value)
    return config


class ConfigManager:
    def __init__(self, config_path=None):
        self.config_path = Path(
            config_path or os.getenv("MANAGER_CONFIG") or DEFAULT_CONFIG_PATH
        )
        self.schema = CONFIG_SCHEMA
        self.config = self._load_config()

    def _load_config(self):
        data = {}
        if self.config_path.exists():
            try:
                with open(self.config_path, "r") as f:
                    data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigError(f"Invalid JSON in {self.config_path}: {e}")
        self.validate(data)
        config = _fill_defaults(data, DEFAULT_CONFIG)
        self._apply_env_overrides(config)
        self.validate(config)
        return config

    def _apply_env_overrides(self, config):
        for env_name, (key, cast) in ENV_OVERRIDES.items():
            value = os.getenv(env_name)
            if value in (None, ""):
                continue
            try:
                config[key] = cast(value)
            except ValueError:
                raise ConfigError(f"Invalid value for {env_name}: {value!r}")
        log_level = os.getenv("LOG_LEVEL")
        if log_level:
            config["log"]["level"] = log_level.upper()

    def validate(self, data):
        errors = sorted(
            Draft7Validator(self.schema).iter_errors(data), key=lambda e: [str(p) for p in e.path]
        )
        if errors:
            details = "; ".join(
                f"{'.'.join(str(p) for p in err.path) or '<root>'}: {err.message}"
                for err in errors
            )
            raise ConfigError(f"Invalid manager config {self.config_path}: {details}")

    def get(self, key, default=None):
        return self.config.get(key, default)

    def auth_enabled(self):
        enabled = self.config.get("auth", {}).get("enabled")
        if enabled is None:
            return self.config.get("host", "127.0.0.1") not in LOOPBACK_HOSTS
        return bool(enabled)


CONFIG_MANAGER = ConfigManager()
