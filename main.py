from utils.config_loader import CONFIG_MANAGER as config
from utils.global_logger import logger
from api.api_service import create_app, start_fastapi_process
from utils.auth import LoginRateLimiter, SessionAuth
from utils.auth_config import AuthConfigManager
from utils.dependencies import initialize_dependencies
from utils.logger import mask_secret
from utils.ports import PortAllocator
from utils.processes import ProcessRunner, build_env
from utils.profile_config import ConfigStore
from utils.profile_paths import ProfilePaths
from utils.profiles import ProfileRegistry
from pathlib import Path
import shutil, sys, tomllib

PYPROJECT = Path(__file__).resolve().parent / "pyproject.toml"


def read_version():
    try:
        with open(PYPROJECT, "rb") as file:
            pyproject = tomllib.load(file)
    except (OSError, tomllib.TOMLDecodeError):
        return "unknown"
    return pyproject["tool"]["poetry"]["version"]


def log_ascii_art(version):
    ascii_art = f"""
   ___                    ____ _
  / _ \\ _ __   ___ _ __  / ___| | __ ___      __
 | | | | '_ \\ / _ \\ '_ \\| |   | |/ _` \\ \\ /\\ / /
 | |_| | |_) |  __/ | | | |___| | (_| |\\ V  V /
  \\___/| .__/ \\___|_| |_|\\____|_|\\__,_| \\_/\\_/
       |_|                         Manager

                  Version: {version}
"""
    logger.info(ascii_art + "\n")


def build_components():
    paths = ProfilePaths(config.get("state_root"))
    config_store = ConfigStore(paths, logger)
    registry = ProfileRegistry(
        paths, config_store, logger, probe_timeout=config.get("probe_timeout")
    )
    port_allocator = PortAllocator(registry, base_port=config.get("base_port"), logger=logger)
    runner = ProcessRunner(
        binary=config.get("openclaw_bin"), logger=logger, timeout=config.get("command_timeout")
    )

    auth_settings = config.get("auth")
    auth_enabled = config.auth_enabled()
    token = AuthConfigManager(auth_settings["config_file"]).get_token()
    session_auth = SessionAuth(
        token,
        LoginRateLimiter(
            max_failures=auth_settings["max_failures"],
            window_seconds=auth_settings["window_seconds"],
        ),
        enabled=auth_enabled,
    )
    if auth_enabled:
        logger.info(
            f"Authentication enabled; access token {mask_secret(token)} "
            f"is stored in {auth_settings['config_file']}"
        )
    else:
        logger.info("Authentication disabled for loopback-only access")

    initialize_dependencies(
        registry=registry,
        config_store=config_store,
        port_allocator=port_allocator,
        runner=runner,
        session_auth=session_auth,
        settings=config.config,
        logger=logger,
    )


def main():
    version = read_version()
    log_ascii_art(version)

    binary = config.get("openclaw_bin")
    if not shutil.which(binary, path=build_env()["PATH"]):
        logger.warning(
            f"'{binary}' was not found on PATH. Setup will fail until it is installed: "
            "npm install -g openclaw@latest"
        )

    try:
        build_components()
    except OSError as e:
        logger.error(f"Unable to initialize the manager: {e}")
        sys.exit(1)

    app = create_app(version=version)
    try:
        start_fastapi_process(
            app,
            host=config.get("host"),
            port=config.get("port"),
            logger=logger,
            open_browser=config.get("open_browser"),
            log_level=config.get("log", {}).get("level", "INFO"),
        )
    except KeyboardInterrupt:
        pass
    logger.info("OpenClaw Manager stopped")


if __name__ == "__main__":
    main()
