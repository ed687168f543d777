from __future__ import annotations

from enum import Enum
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Callable, List, Optional
from utils.errors import (
    ManagerError,
    OperationCancelledError,
    SpawnError,
    SubprocessError,
    ValidationError,
)
from utils.model_catalog import DEFAULT_MODEL, get_model
from utils.processes import ProgressTicker
from utils.profile_config import (
    channel_settings,
    generate_config,
    merge_documents,
    parse_document,
)
from utils.profile_paths import validate_profile_name
import asyncio

ONBOARD_ARGS = [
    "onboard",
    "--install-daemon",
    "--flow",
    "quickstart",
    "--accept-risk",
    "--skip-skills",
    "--skip-channels",
    "--skip-ui",
    "--skip-health",
    "--non-interactive",
]

ProgressCallback = Callable[[int, str], None]


class PipelineState(str, Enum):
    INIT = "init"
    DIRECTORY_READY = "directory_ready"
    CONFIG_WRITTEN = "config_written"
    ONBOARDING = "onboarding"
    RECONCILED = "reconciled"
    SERVICE_INSTALLED = "service_installed"
    STARTED = "started"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STATES = {PipelineState.DONE, PipelineState.FAILED}

ALLOWED_TRANSITIONS = {
    PipelineState.INIT: {PipelineState.DIRECTORY_READY},
    PipelineState.DIRECTORY_READY: {PipelineState.CONFIG_WRITTEN},
    PipelineState.CONFIG_WRITTEN: {PipelineState.ONBOARDING},
    PipelineState.ONBOARDING: {PipelineState.RECONCILED},
    PipelineState.RECONCILED: {PipelineState.SERVICE_INSTALLED, PipelineState.DONE},
    PipelineState.SERVICE_INSTALLED: {PipelineState.STARTED, PipelineState.DONE},
    PipelineState.STARTED: {PipelineState.DONE},
}


class SetupRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    profile: str = "default"
    api_key: str = Field("", alias="apiKey")
    model: str = DEFAULT_MODEL
    channel: str = "telegram"
    bot_token: Optional[str] = Field(None, alias="botToken")
    app_id: Optional[str] = Field(None, alias="appId")
    app_secret: Optional[str] = Field(None, alias="appSecret")

    @field_validator("profile", mode="before")
    @classmethod
    def _default_profile(cls, value):
        return value or "default"

    def credentials(self) -> dict:
        return {
            "botToken": self.bot_token,
            "appId": self.app_id,
            "appSecret": self.app_secret,
        }

    def validate_fields(self):
        validate_profile_name(self.profile)
        if not self.api_key:
            raise ValidationError("API Key required")
        if not get_model(self.model):
            raise ValidationError(f"Unknown model: {self.model}")
        channel_settings(self.channel, self.credentials())
        return self


class SetupResult(BaseModel):
    profile: str
    port: int
    config_path: str
    warnings: List[str] = Field(default_factory=list)


def enable_plugin(document: dict, channel: str) -> dict:
    """`openclaw onboard` leaves the channel plugin disabled; switch it back on."""
    plugins = document.get("plugins")
    if not isinstance(plugins, dict):
        plugins = document["plugins"] = {}
    entries = plugins.get("entries")
    if not isinstance(entries, dict):
        entries = plugins["entries"] = {}
    entry = entries.get(channel)
    if not isinstance(entry, dict):
        entry = entries[channel] = {}
    entry["enabled"] = True
    return document


class SetupPipeline:
    """
    Creates or re-provisions one profile.

    The pipeline walks INIT -> DIRECTORY_READY -> CONFIG_WRITTEN ->
    ONBOARDING -> RECONCILED -> SERVICE_INSTALLED -> STARTED -> DONE and
    lands in FAILED from any of them on error or abort. Installing and
    starting the gateway service are best-effort: their failures are
    reported as progress warnings and the setup still completes.
    """

    def __init__(
        self,
        request: SetupRequest,
        config_store,
        port_allocator,
        runner,
        logger,
        on_progress: Optional[ProgressCallback] = None,
        provider_base_url: str = "https://code.evolink.ai",
    ):
        self.request = request
        self.config_store = config_store
        self.port_allocator = port_allocator
        self.runner = runner
        self.logger = logger
        self.on_progress = on_progress
        self.provider_base_url = provider_base_url
        self.state = PipelineState.INIT
        self.history = [PipelineState.INIT]
        self.warnings: List[str] = []
        self.error: Optional[ManagerError] = None
        self._abort_requested = False
        self._handle = None

    @property
    def aborted(self) -> bool:
        return self._abort_requested

    def _transition(self, state: PipelineState):
        if state is not PipelineState.FAILED and state not in ALLOWED_TRANSITIONS.get(
            self.state, set()
        ):
            raise RuntimeError(f"Invalid setup transition {self.state} -> {state}")
        self.logger.debug(
            f"[{self.request.profile}] setup {self.state.value} -> {state.value}"
        )
        self.state = state
        self.history.append(state)

    def _progress(self, percent: int, message: str):
        if self.on_progress:
            self.on_progress(percent, message)

    def _warn(self, percent: int, message: str):
        self.logger.warning(f"[{self.request.profile}] {message}")
        self.warnings.append(message)
        self._progress(percent, f"Warning: {message}")

    def _check_abort(self):
        if self._abort_requested:
            raise OperationCancelledError("Setup cancelled")

    def abort(self):
        if self.state in TERMINAL_STATES:
            return
        self._abort_requested = True
        if self._handle is not None:
            self._handle.abort()

    async def run(self) -> SetupResult:
        try:
            return await self._run()
        except asyncio.CancelledError:
            self.abort()
            self._fail(OperationCancelledError("Setup cancelled"))
            raise
        except ManagerError as e:
            self._fail(e)
            raise
        except Exception as e:
            self.logger.exception(f"[{self.request.profile}] setup crashed")
            error = ManagerError(f"Setup failed: {e}")
            self._fail(error)
            raise error from e

    def _fail(self, error: ManagerError):
        if self.state in TERMINAL_STATES:
            return
        self.error = error
        self._transition(PipelineState.FAILED)
        self.logger.error(f"[{self.request.profile}] setup failed: {error.message}")

    async def _run(self) -> SetupResult:
        request = self.request
        profile = validate_profile_name(request.profile)
        paths = self.config_store.paths

        existing = await run_in_threadpool(self.config_store.read_or_empty, profile)
        port = parse_document(existing).gateway_port if existing else None
        claimed = None
        if not port:
            port = claimed = await run_in_threadpool(self.port_allocator.claim)

        try:
            generated = generate_config(
                request.api_key,
                request.model,
                request.channel,
                request.credentials(),
                port,
                self.provider_base_url,
            )
            self._check_abort()

            self._progress(5, f"Preparing profile {profile} on port {port}...")
            directory = paths.directory(profile)
            await run_in_threadpool(directory.mkdir, parents=True, exist_ok=True)
            self._transition(PipelineState.DIRECTORY_READY)

            self._progress(10, "Writing configuration...")
            config_path = await run_in_threadpool(
                self.config_store.write, profile, merge_documents(existing, generated)
            )
            self._transition(PipelineState.CONFIG_WRITTEN)
        finally:
            if claimed is not None:
                self.port_allocator.release(claimed)

        await self._onboard(profile, port)

        self._check_abort()
        self._progress(82, "Finalizing configuration...")
        on_disk = await run_in_threadpool(self.config_store.read_or_empty, profile)
        final = enable_plugin(merge_documents(on_disk, generated), request.channel)
        await run_in_threadpool(self.config_store.write, profile, final)
        self._transition(PipelineState.RECONCILED)

        await self._install_and_start(profile)

        self._transition(PipelineState.DONE)
        self.logger.info(f"[{profile}] setup complete on port {port}")
        return SetupResult(
            profile=profile, port=port, config_path=config_path, warnings=self.warnings
        )

    async def _onboard(self, profile: str, port: int):
        self._transition(PipelineState.ONBOARDING)
        self._progress(15, "Running OpenClaw onboarding...")
        ticker = ProgressTicker(start=15, step=3, ceiling=80)
        try:
            self._handle = await self.runner.stream(
                profile,
                ONBOARD_ARGS + ["--gateway-port", str(port)],
                lambda line: self._progress(ticker.tick(), line),
            )
            if self._abort_requested:
                self._handle.abort()
            await self._handle.wait()
        except OperationCancelledError:
            raise
        except SpawnError as e:
            raise SpawnError(
                f"OpenClaw CLI not found ({e.message}). Install it with: npm install -g openclaw@latest"
            )
        except SubprocessError as e:
            raise SubprocessError(
                f"Onboarding failed (exit code {e.returncode}). "
                "You can retry manually: openclaw onboard --install-daemon",
                returncode=e.returncode,
            )
        finally:
            self._handle = None
        self._progress(80, "Onboarding complete.")

    async def _install_and_start(self, profile: str):
        self._check_abort()
        self._progress(88, "Installing gateway service...")
        install = await self.runner.run(profile, "gateway", "install")
        if not install.ok:
            self._warn(
                90,
                f"Gateway service install failed ({install.error}); start it later from the dashboard.",
            )
            return
        self._transition(PipelineState.SERVICE_INSTALLED)

        self._check_abort()
        self._progress(94, "Starting gateway...")
        start = await self.runner.run(profile, "gateway", "start")
        if not start.ok:
            self._warn(
                96,
                f"Gateway start failed ({start.error}); start it later from the dashboard.",
            )
            return
        self._transition(PipelineState.STARTED)
        self._progress(98, "Gateway started.")
