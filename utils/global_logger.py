from utils.config_loader import CONFIG_MANAGER
from utils.logger import get_logger

_log_config = CONFIG_MANAGER.get("log", {}) or {}

logger = get_logger(
    name="openclaw-manager",
    level=_log_config.get("level", "INFO"),
    log_file=_log_config.get("file"),
)
