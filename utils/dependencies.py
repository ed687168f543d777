from api.api_state import APIState, TicketStore
from api.connection_manager import StreamManager
from utils.auth import SessionAuth
from utils.gateway import GatewayController
from utils.ports import PortAllocator
from utils.processes import ProcessRunner
from utils.profile_config import ConfigStore
from utils.profiles import ProfileRegistry
from logging import Logger

_shared_instances = {}


def initialize_dependencies(
    registry, config_store, port_allocator, runner, session_auth, settings, logger
):
    _shared_instances["registry"] = registry
    _shared_instances["config_store"] = config_store
    _shared_instances["port_allocator"] = port_allocator
    _shared_instances["runner"] = runner
    _shared_instances["session_auth"] = session_auth
    _shared_instances["settings"] = settings
    _shared_instances["logger"] = logger
    _shared_instances["stream_manager"] = StreamManager(logger=logger)
    _shared_instances["gateway"] = GatewayController(
        runner=runner, registry=registry, config_store=config_store, logger=logger
    )
    _shared_instances["api_state"] = APIState(
        logger=logger,
        session_auth=session_auth,
        stream_manager=_shared_instances["stream_manager"],
        ticket_ttl=settings.get("ticket_ttl", 60),
        sweep_interval=settings.get("ticket_sweep_interval", 60),
    )


def get_registry() -> ProfileRegistry:
    return _shared_instances["registry"]


def get_config_store() -> ConfigStore:
    return _shared_instances["config_store"]


def get_port_allocator() -> PortAllocator:
    return _shared_instances["port_allocator"]


def get_runner() -> ProcessRunner:
    return _shared_instances["runner"]


def get_session_auth() -> SessionAuth:
    return _shared_instances["session_auth"]


def get_settings() -> dict:
    return _shared_instances["settings"]


def get_logger() -> Logger:
    return _shared_instances["logger"]


def get_stream_manager() -> StreamManager:
    return _shared_instances["stream_manager"]


def get_gateway() -> GatewayController:
    return _shared_instances["gateway"]


def get_api_state() -> APIState:
    return _shared_instances["api_state"]


def get_ticket_store() -> TicketStore:
    return _shared_instances["api_state"].tickets
