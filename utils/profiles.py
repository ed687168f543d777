from __future__ import annotations

from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from utils.errors import ConfigIOError, ProfileNotFoundError
from utils.model_catalog import resolve_model_name, strip_provider
from utils.profile_paths import (
    CONFIG_FILENAME,
    DEFAULT_PROFILE,
    validate_profile_name,
)
import asyncio, os, shutil


class ProfileInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    name: str
    port: Optional[int] = None
    status: str = "stopped"
    model: str = ""
    model_id: str = Field("", alias="modelId")
    channel: str = ""
    config_path: str = Field("", alias="configPath")

    def to_response(self) -> dict:
        return self.model_dump(by_alias=True)


async def is_port_open(host, port, timeout=0.8):
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), timeout=timeout
        )
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


class ProfileRegistry:
    def __init__(self, paths, config_store, logger, probe_timeout=0.8):
        self.paths = paths
        self.config_store = config_store
        self.logger = logger
        self.probe_timeout = probe_timeout

    def exists(self, name) -> bool:
        return self.paths.config_path(name).is_file()

    def list_names(self) -> List[str]:
        names = []
        if self.exists(DEFAULT_PROFILE):
            names.append(DEFAULT_PROFILE)
        try:
            entries = list(os.scandir(self.paths.state_root))
        except OSError as e:
            self.logger.warning(f"Unable to scan {self.paths.state_root}: {e}")
            return names
        for entry in entries:
            if not entry.is_dir():
                continue
            name = self.paths.name_from_directory(entry.name)
            if not name or name == DEFAULT_PROFILE:
                continue
            if os.path.isfile(os.path.join(entry.path, CONFIG_FILENAME)):
                names.append(name)
        return names

    def configured_port(self, name) -> Optional[int]:
        try:
            return self.config_store.read_typed(name).gateway_port
        except ConfigIOError:
            return None

    def configured_ports(self) -> set[int]:
        ports = set()
        for name in self.list_names():
            port = self.configured_port(name)
            if isinstance(port, int):
                ports.add(port)
        return ports

    def read_info(self, name) -> ProfileInfo:
        """Everything ``info`` reports except the live status."""
        name = validate_profile_name(name)
        if not self.exists(name):
            raise ProfileNotFoundError(name)

        info = ProfileInfo(
            name=name, config_path=str(self.paths.config_path(name))
        )
        try:
            config = self.config_store.read_typed(name)
        except ConfigIOError as e:
            self.logger.warning(f"Unable to read config for {name}: {e}")
            return info

        info.port = config.gateway_port
        info.model_id = strip_provider(config.primary_model)
        info.model = resolve_model_name(info.model_id) if info.model_id else ""
        info.channel = config.first_enabled_channel() or ""
        return info

    async def info(self, name) -> ProfileInfo:
        info = await run_in_threadpool(self.read_info, name)
        if info.port:
            running = await is_port_open("127.0.0.1", info.port, self.probe_timeout)
            info.status = "running" if running else "stopped"
        return info

    async def list_info(self) -> List[ProfileInfo]:
        names = await run_in_threadpool(self.list_names)
        results = await asyncio.gather(
            *(self.info(name) for name in names), return_exceptions=True
        )
        profiles = []
        for name, result in zip(names, results):
            if isinstance(result, ProfileNotFoundError):
                continue
            if isinstance(result, Exception):
                self.logger.warning(f"Status lookup failed for {name}: {result}")
                profiles.append(ProfileInfo(name=name))
                continue
            profiles.append(result)
        return profiles

    def remove_directory(self, name):
        name = validate_profile_name(name)
        directory = self.paths.directory(name)
        if not directory.exists():
            raise ProfileNotFoundError(name)
        shutil.rmtree(directory)
        self.logger.info(f"Removed profile directory {directory}")
