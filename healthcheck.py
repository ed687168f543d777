import logging
import socket
import sys

from utils.config_loader import CONFIG_MANAGER
from utils.profile_config import ConfigStore
from utils.profile_paths import ProfilePaths
from utils.profiles import ProfileRegistry


def _is_port_open(host, port, timeout=1.5):
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def build_registry(state_root):
    logger = logging.getLogger("openclaw-manager.healthcheck")
    config_store = ConfigStore(ProfilePaths(state_root), logger)
    return ProfileRegistry(config_store.paths, config_store, logger)


def verify_profiles(registry, host="127.0.0.1", timeout=1.5):
    error_messages = []
    healthy = []
    for name in registry.list_names():
        port = registry.configured_port(name)
        if not port:
            error_messages.append(f"The profile {name} has no gateway port configured.")
            continue
        if not _is_port_open(host, port, timeout):
            error_messages.append(
                f"The gateway for profile {name} is not responding on {host}:{port}."
            )
            continue
        healthy.append(name)
    return healthy, error_messages


def main():
    registry = build_registry(CONFIG_MANAGER.get("state_root"))
    healthy, errors = verify_profiles(
        registry, timeout=max(1.5, CONFIG_MANAGER.get("probe_timeout", 0.8))
    )

    if errors:
        print(" | ".join(errors), file=sys.stderr)
        sys.exit(1)
    elif not healthy:
        print("No profiles configured.")
        sys.exit(0)
    else:
        print(f"All gateways are healthy: {', '.join(healthy)}.")
        sys.exit(0)


if __name__ == "__main__":
    main()
