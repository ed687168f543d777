from __future__ import annotations

from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Callable, Optional
from utils.errors import ValidationError
from utils.profile_paths import validate_profile_name
import re

TELEGRAM_ID_PATTERN = re.compile(r"^-?\d{1,20}$")


class ConnectRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    profile: str = "default"
    channel: str = "telegram"
    telegram_id: Optional[str] = Field(None, alias="telegramId")

    @field_validator("profile", mode="before")
    @classmethod
    def _default_profile(cls, value):
        return value or "default"

    @field_validator("telegram_id", mode="before")
    @classmethod
    def _stringify_id(cls, value):
        if value is None:
            return None
        return str(value)

    def validate_fields(self):
        validate_profile_name(self.profile)
        if self.channel == "telegram":
            if not self.telegram_id:
                raise ValidationError("Telegram User ID required")
            if not TELEGRAM_ID_PATTERN.match(self.telegram_id):
                raise ValidationError("Telegram User ID must be numeric")
        return self


def add_to_allowlist(document: dict, channel: str, user_id: str) -> dict:
    channels = document.setdefault("channels", {})
    settings = channels.setdefault(channel, {})
    settings["dmPolicy"] = "allowlist"
    allowed = [str(item) for item in settings.get("allowFrom") or []]
    if user_id not in allowed:
        allowed.append(user_id)
    settings["allowFrom"] = allowed
    return document


async def connect_user(
    request: ConnectRequest,
    config_store,
    runner,
    logger,
    on_progress: Optional[Callable[[int, str], None]] = None,
) -> dict:
    """
    Restrict a profile's channel to direct messages from one more user and
    restart its gateway. Channels without an allowlist step finish at once.
    """

    def progress(percent, message):
        if on_progress:
            on_progress(percent, message)

    request.validate_fields()
    profile = validate_profile_name(request.profile)

    if request.channel != "telegram":
        progress(90, f"No allowlist step for {request.channel}.")
        return {"profile": profile, "channel": request.channel, "restarted": False}

    progress(20, "Updating Telegram allowlist...")
    document = await run_in_threadpool(config_store.read, profile)
    add_to_allowlist(document, "telegram", request.telegram_id)
    await run_in_threadpool(config_store.write, profile, document)
    logger.info(f"[{profile}] Telegram user {request.telegram_id} added to allowlist")

    progress(60, "Restarting gateway...")
    result = await runner.run(profile, "gateway", "restart")
    if not result.ok:
        logger.warning(f"[{profile}] Gateway restart skipped: {result.error}")
        progress(90, "Warning: gateway restart skipped (may need manual start).")
    else:
        progress(90, "Gateway restarted.")
    return {"profile": profile, "channel": "telegram", "restarted": result.ok}
