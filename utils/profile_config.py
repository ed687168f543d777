from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as SchemaError
from pydantic.alias_generators import to_camel
from typing import Dict, List, Optional
from utils.errors import ConfigIOError, ConfigNotFoundError, ValidationError
from utils.model_catalog import PROVIDER, get_model, primary_reference
import copy, json, os, tempfile

CHANNEL_CREDENTIALS = {
    "telegram": ("botToken",),
    "feishu": ("appId", "appSecret"),
}
MAX_SCHEMA_REPAIRS = 50


class ConfigNode(BaseModel):
    # Unknown keys are kept so documents rewritten by `openclaw onboard`
    # round-trip unchanged.
    model_config = ConfigDict(
        extra="allow", alias_generator=to_camel, populate_by_name=True
    )


class ModelEntry(ConfigNode):
    id: str
    name: Optional[str] = None


class ProviderConfig(ConfigNode):
    api: Optional[str] = None
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    models: List[ModelEntry] = Field(default_factory=list)


class ModelsSection(ConfigNode):
    providers: Dict[str, ProviderConfig] = Field(default_factory=dict)


class ModelRef(ConfigNode):
    primary: Optional[str] = None


class AgentDefaults(ConfigNode):
    model: Optional[ModelRef] = None


class AgentsSection(ConfigNode):
    defaults: Optional[AgentDefaults] = None


class ChannelConfig(ConfigNode):
    enabled: bool = False
    dm_policy: Optional[str] = None


class PluginEntry(ConfigNode):
    enabled: bool = False


class PluginsSection(ConfigNode):
    entries: Dict[str, PluginEntry] = Field(default_factory=dict)


class GatewaySection(ConfigNode):
    port: Optional[int] = None


class ProfileConfig(ConfigNode):
    models: Optional[ModelsSection] = None
    agents: Optional[AgentsSection] = None
    channels: Dict[str, ChannelConfig] = Field(default_factory=dict)
    plugins: Optional[PluginsSection] = None
    gateway: Optional[GatewaySection] = None

    @property
    def primary_model(self) -> Optional[str]:
        if self.agents and self.agents.defaults and self.agents.defaults.model:
            return self.agents.defaults.model.primary
        return None

    @property
    def gateway_port(self) -> Optional[int]:
        return self.gateway.port if self.gateway else None

    def first_enabled_channel(self) -> Optional[str]:
        for name, channel in self.channels.items():
            if channel.enabled:
                return name
        return None


def _drop_value(document, loc) -> bool:
    """Delete the deepest value of ``document`` reachable along ``loc``."""
    parent, key, node = None, None, document
    for part in loc:
        if isinstance(node, dict) and part in node:
            parent, key, node = node, part, node[part]
        elif isinstance(node, list) and isinstance(part, int) and 0 <= part < len(node):
            parent, key, node = node, part, node[part]
        else:
            break
    if parent is None:
        return False
    del parent[key]
    return True


def parse_document(document) -> ProfileConfig:
    """
    Typed view over a raw config document.

    A value of an unexpected type is left out of the view on its own, so one
    odd field written by the CLI never hides the rest of the document. The
    raw document is not modified.
    """
    if not isinstance(document, dict):
        raise ValueError("config document must be a JSON object")
    candidate = copy.deepcopy(document)
    for _ in range(MAX_SCHEMA_REPAIRS):
        try:
            return ProfileConfig.model_validate(candidate)
        except SchemaError as e:
            if not _drop_value(candidate, e.errors()[0]["loc"]):
                break
    return ProfileConfig()


def merge_documents(base: dict, overlay: dict) -> dict:
    """
    Right-biased recursive merge.

    Mappings present on both sides are merged key by key; any other value
    from ``overlay`` (scalars, lists, a mapping replacing a scalar) replaces
    the one in ``base``. Neither argument is modified.
    """
    result = copy.deepcopy(base) if isinstance(base, dict) else {}
    for key, value in (overlay or {}).items():
        current = result.get(key)
        if isinstance(value, dict) and isinstance(current, dict):
            result[key] = merge_documents(current, value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def model_entry(model_id: str) -> dict:
    model = get_model(model_id)
    return {
        "id": model_id,
        "name": model["name"] if model else model_id,
        "reasoning": False,
        "input": ["text"],
        "cost": {"input": 0, "output": 0, "cacheRead": 0, "cacheWrite": 0},
        "contextWindow": 200000,
        "maxTokens": 8192,
    }


def model_overlay(model_id: str) -> dict:
    """Overlay that swaps the profile's model without touching credentials."""
    return {
        "models": {"providers": {PROVIDER: {"models": [model_entry(model_id)]}}},
        "agents": {"defaults": {"model": {"primary": primary_reference(model_id)}}},
    }


def channel_settings(channel: str, credentials: Optional[dict]) -> dict:
    if channel not in CHANNEL_CREDENTIALS:
        raise ValidationError(f"Unsupported channel: {channel}")
    credentials = credentials or {}
    missing = [key for key in CHANNEL_CREDENTIALS[channel] if not credentials.get(key)]
    if missing:
        raise ValidationError(f"Missing {', '.join(missing)} for channel {channel}")

    settings = {"enabled": True}
    for key in CHANNEL_CREDENTIALS[channel]:
        settings[key] = credentials[key]
    if channel == "telegram":
        settings["dmPolicy"] = "pairing"
        settings["groups"] = {"*": {"requireMention": True}}
    return settings


def generate_config(
    api_key: str,
    model_id: str,
    channel: str,
    credentials: Optional[dict],
    port: int,
    base_url: str,
) -> dict:
    if not api_key:
        raise ValidationError("API Key required")
    if not get_model(model_id):
        raise ValidationError(f"Unknown model: {model_id}")

    document = merge_documents(
        {
            "models": {
                "providers": {
                    PROVIDER: {
                        "api": "anthropic-messages",
                        "baseUrl": base_url,
                        "apiKey": api_key,
                    }
                }
            },
            "channels": {channel: channel_settings(channel, credentials)},
            "plugins": {"entries": {channel: {"enabled": True}}},
            "gateway": {"port": port},
        },
        model_overlay(model_id),
    )
    return document


class ConfigStore:
    """Reads and writes the per-profile openclaw.json document."""

    def __init__(self, paths, logger):
        self.paths = paths
        self.logger = logger

    def read(self, profile) -> dict:
        path = self.paths.config_path(profile)
        if not path.exists():
            raise ConfigNotFoundError(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                document = json.load(f)
        except (OSError, ValueError) as e:
            raise ConfigIOError(f"Unreadable config {path}: {e}")
        if not isinstance(document, dict):
            raise ConfigIOError(f"Unreadable config {path}: not a JSON object")
        return document

    def read_typed(self, profile) -> ProfileConfig:
        return parse_document(self.read(profile))

    def read_or_empty(self, profile) -> dict:
        try:
            return self.read(profile)
        except ConfigNotFoundError:
            return {}
        except ConfigIOError as e:
            self.logger.warning(f"Ignoring malformed config for {profile}: {e}")
            return {}

    def write(self, profile, document: dict) -> str:
        if not isinstance(document, dict):
            raise ValidationError("Refusing to write a config that is not a JSON object")

        path = self.paths.config_path(profile)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".openclaw.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except OSError as e:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise ConfigIOError(f"Failed to write config {path}: {e}")
        self.logger.debug(f"Config written to {path}")
        return str(path)

    def update(self, profile, overlay: dict) -> dict:
        """Merge ``overlay`` into an existing profile's config and persist it."""
        try:
            base = self.read(profile)
        except ConfigIOError as e:
            self.logger.warning(f"Rebuilding malformed config for {profile}: {e}")
            base = {}
        merged = merge_documents(base, overlay)
        self.write(profile, merged)
        return merged
