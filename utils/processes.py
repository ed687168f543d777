from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Optional
from utils.errors import (
    CommandTimeoutError,
    OperationCancelledError,
    SpawnError,
    SubprocessError,
)
from utils.logger import SubprocessLogger, redact
from utils.profile_paths import DEFAULT_PROFILE, validate_profile_name
import asyncio, os, psutil

# Where npm puts global binaries on the platforms the gateway supports.
EXTRA_BIN_DIRS = [
    "/opt/homebrew/bin",
    "~/.npm-global/bin",
    "~/.local/bin",
    "/usr/local/bin",
    "~/AppData/Roaming/npm",
]
STREAM_LINE_LIMIT = 1024 * 1024
OUTPUT_DRAIN_TIMEOUT = 5.0
RUN_DRAIN_TIMEOUT = 1.0
EXIT_POLL_INTERVAL = 0.05


def build_env():
    env = os.environ.copy()
    paths = env.get("PATH", "").split(os.pathsep) if env.get("PATH") else []
    for extra in EXTRA_BIN_DIRS:
        extra = os.path.expanduser(extra)
        if os.path.isdir(extra) and extra not in paths:
            paths.append(extra)
    env["PATH"] = os.pathsep.join(paths)
    return env


def kill_process_tree(pid, logger=None):
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return
    try:
        children = parent.children(recursive=True)
    except psutil.NoSuchProcess:
        children = []
    for proc in children + [parent]:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass
        except psutil.AccessDenied as e:
            if logger:
                logger.warning(f"Unable to kill PID {proc.pid}: {e}")


async def wait_for_exit(process) -> int:
    """
    Wait for the child itself to exit.

    ``Process.wait`` also waits for the output pipe to close, and a daemon
    started by the child can hold that pipe open for its whole life.
    """
    while process.returncode is None:
        await asyncio.sleep(EXIT_POLL_INTERVAL)
    return process.returncode


@dataclass
class CommandResult:
    command: List[str]
    returncode: Optional[int] = None
    output: str = ""
    error: Optional[str] = None
    timed_out: bool = False
    spawn_failed: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.error

    def raise_for_status(self):
        if self.ok:
            return self
        if self.spawn_failed:
            raise SpawnError(self.error)
        if self.timed_out:
            raise CommandTimeoutError(self.error)
        raise SubprocessError(
            self.error or f"Command exited with code {self.returncode}",
            returncode=self.returncode,
        )


class ProgressTicker:
    """Turns subprocess output lines into a rising percentage."""

    def __init__(self, start=15, step=3, ceiling=80):
        self.percent = start
        self.step = step
        self.ceiling = ceiling

    def tick(self) -> int:
        self.percent = min(self.ceiling, self.percent + self.step)
        return self.percent


@dataclass
class StreamHandle:
    process: asyncio.subprocess.Process
    command: List[str]
    logger: object = None
    cancelled: bool = False
    tail: List[str] = field(default_factory=list)
    _reader: Optional[asyncio.Task] = None

    @property
    def pid(self):
        return self.process.pid

    def abort(self):
        if self.cancelled or self.process.returncode is not None:
            self.cancelled = True
            return
        self.cancelled = True
        if self.logger:
            self.logger.info(f"Aborting {' '.join(self.command[:3])} (PID {self.pid})")
        kill_process_tree(self.pid, self.logger)

    async def wait(self) -> int:
        try:
            returncode = await wait_for_exit(self.process)
        except asyncio.CancelledError:
            self.abort()
            raise
        if self._reader is not None:
            # a daemon spawned by the child can keep the pipe open after exit
            done, _ = await asyncio.wait({self._reader}, timeout=OUTPUT_DRAIN_TIMEOUT)
            if not done:
                self._reader.cancel()
        if self.cancelled:
            raise OperationCancelledError("Operation cancelled", returncode=returncode)
        if returncode != 0:
            last = f": {self.tail[-1]}" if self.tail else ""
            raise SubprocessError(
                f"Command exited with code {returncode}{last}", returncode=returncode
            )
        return returncode


class ProcessRunner:
    """Runs the openclaw CLI for a profile."""

    def __init__(self, binary="openclaw", logger=None, timeout=15):
        self.binary = binary
        self.logger = logger
        self.timeout = timeout

    def build_command(self, profile, *args) -> List[str]:
        profile = validate_profile_name(profile)
        command = [self.binary]
        if profile != DEFAULT_PROFILE:
            command += ["--profile", profile]
        command += [str(arg) for arg in args]
        return command

    async def _spawn(self, command):
        try:
            return await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env=build_env(),
                start_new_session=True,
                limit=STREAM_LINE_LIMIT,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise SpawnError(f"Unable to start {command[0]}: {e}")

    async def run(self, profile, *args, timeout=None) -> CommandResult:
        """
        Run a short command to completion.

        Failures are returned, not raised: the caller decides whether a
        failed install or restart matters.
        """
        command = self.build_command(profile, *args)
        timeout = timeout or self.timeout
        if self.logger:
            self.logger.debug(f"Running: {' '.join(command)}")
        try:
            process = await self._spawn(command)
        except SpawnError as e:
            return CommandResult(command=command, error=e.message, spawn_failed=True)

        chunks = []

        async def collect():
            while True:
                chunk = await process.stdout.read(65536)
                if not chunk:
                    return
                chunks.append(chunk)

        reader = asyncio.create_task(collect())
        try:
            await asyncio.wait_for(wait_for_exit(process), timeout=timeout)
        except asyncio.TimeoutError:
            reader.cancel()
            kill_process_tree(process.pid, self.logger)
            await wait_for_exit(process)
            return CommandResult(
                command=command,
                returncode=process.returncode,
                error=f"Command timed out after {timeout}s",
                timed_out=True,
            )
        except asyncio.CancelledError:
            reader.cancel()
            kill_process_tree(process.pid, self.logger)
            raise

        # a daemon spawned by the child can keep the pipe open after exit
        done, _ = await asyncio.wait({reader}, timeout=RUN_DRAIN_TIMEOUT)
        if not done:
            reader.cancel()

        output = redact(b"".join(chunks).decode("utf-8", errors="replace").strip())
        result = CommandResult(
            command=command, returncode=process.returncode, output=output
        )
        if process.returncode != 0:
            last_line = output.splitlines()[-1] if output else ""
            result.error = f"Command exited with code {process.returncode}" + (
                f": {last_line}" if last_line else ""
            )
        return result

    async def stream(
        self, profile, args, on_line: Callable[[str], None]
    ) -> StreamHandle:
        """
        Start a long-running command and feed each non-empty output line to
        ``on_line``. Await ``handle.wait()`` for the outcome.
        """
        command = self.build_command(profile, *args)
        process = await self._spawn(command)
        handle = StreamHandle(process=process, command=command, logger=self.logger)
        label = " ".join(args[:1]) if args else command[0]
        relay = SubprocessLogger(self.logger, profile, label) if self.logger else None

        async def read_output():
            async for raw in process.stdout:
                line = raw.decode("utf-8", errors="replace").strip()
                if not line:
                    continue
                line = redact(line)
                handle.tail = (handle.tail + [line])[-20:]
                if relay:
                    relay.log_line(line)
                on_line(line)
            if relay:
                relay.finish(await wait_for_exit(process))

        handle._reader = asyncio.create_task(read_output())
        if self.logger:
            self.logger.info(f"Started {' '.join(command)} (PID {process.pid})")
        return handle
