from fastapi.concurrency import run_in_threadpool
from utils.errors import ProfileNotFoundError, ValidationError
from utils.model_catalog import get_model
from utils.profile_config import model_overlay
from utils.profile_paths import validate_profile_name


class GatewayController:
    """Start/stop/restart, delete and re-model existing profiles."""

    def __init__(self, runner, registry, config_store, logger):
        self.runner = runner
        self.registry = registry
        self.config_store = config_store
        self.logger = logger

    async def _existing(self, profile):
        profile = validate_profile_name(profile)
        if not await run_in_threadpool(self.registry.exists, profile):
            raise ProfileNotFoundError(profile)
        return profile

    async def _install(self, profile):
        # The service registration usually exists already; a failure here only
        # matters if the following start fails too.
        result = await self.runner.run(profile, "gateway", "install")
        if not result.ok:
            self.logger.warning(f"[{profile}] gateway install skipped: {result.error}")
        return result

    async def start(self, profile):
        profile = await self._existing(profile)
        await self._install(profile)
        self.logger.info(f"Starting gateway for {profile}")
        return (await self.runner.run(profile, "gateway", "start")).raise_for_status()

    async def stop(self, profile):
        profile = await self._existing(profile)
        self.logger.info(f"Stopping gateway for {profile}")
        return (await self.runner.run(profile, "gateway", "stop")).raise_for_status()

    async def restart(self, profile):
        profile = await self._existing(profile)
        await self._install(profile)
        self.logger.info(f"Restarting gateway for {profile}")
        return (await self.runner.run(profile, "gateway", "restart")).raise_for_status()

    async def delete(self, profile):
        profile = await self._existing(profile)
        result = await self.runner.run(profile, "gateway", "uninstall")
        if not result.ok:
            self.logger.warning(
                f"[{profile}] gateway uninstall failed, removing files anyway: {result.error}"
            )
        await run_in_threadpool(self.registry.remove_directory, profile)
        self.logger.info(f"Profile {profile} deleted")

    async def change_model(self, profile, model_id):
        model_id = (model_id or "").strip()
        if not model_id:
            raise ValidationError("Model ID required")
        if not get_model(model_id):
            raise ValidationError(f"Unknown model: {model_id}")
        profile = await self._existing(profile)

        await run_in_threadpool(self.config_store.update, profile, model_overlay(model_id))
        self.logger.info(f"[{profile}] model changed to {model_id}")

        result = await self.runner.run(profile, "gateway", "restart")
        if not result.ok:
            self.logger.warning(f"[{profile}] gateway restart after model change failed: {result.error}")
        return result.ok
