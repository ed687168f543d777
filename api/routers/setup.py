from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from utils.connect import ConnectRequest, connect_user
from utils.dependencies import (
    get_config_store,
    get_logger,
    get_port_allocator,
    get_runner,
    get_settings,
    get_stream_manager,
    get_ticket_store,
)
from utils.errors import ManagerError
from utils.setup import SetupPipeline, SetupRequest
import asyncio, json

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
POLL_INTERVAL = 0.5
KEEPALIVE_SECONDS = 15

setup_router = APIRouter()


def as_sse(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def consume_outcome(task: asyncio.Task):
    # outcome of a job nobody is streaming any more
    if not task.cancelled():
        task.exception()


def terminal_event(task: asyncio.Task, done_message: str) -> dict:
    if task.cancelled():
        return {"percent": -1, "message": "Operation cancelled", "error": True}
    error = task.exception()
    if error is not None:
        message = error.message if isinstance(error, ManagerError) else str(error)
        return {"percent": -1, "message": message, "error": True}
    event = {"percent": 100, "message": done_message, "done": True}
    event.update(task.result() or {})
    return event


def progress_stream(
    request: Request, streams, logger, kind, profile, start, done_message, pipeline=None
):
    """
    Run ``start(on_progress)`` as a task and relay its progress as SSE.

    The job is aborted when the client goes away before it finishes.
    """
    queue: asyncio.Queue = asyncio.Queue()

    def on_progress(percent, message):
        queue.put_nowait({"percent": percent, "message": message})

    async def events():
        task = asyncio.create_task(start(on_progress))
        task.add_done_callback(consume_outcome)
        operation = streams.register(kind, profile, task, pipeline)
        idle = 0.0
        try:
            while True:
                if await request.is_disconnected():
                    logger.info(f"[{profile}] client disconnected during {kind}")
                    break
                if task.done() and queue.empty():
                    yield as_sse(terminal_event(task, done_message))
                    break
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=POLL_INTERVAL)
                except asyncio.TimeoutError:
                    idle += POLL_INTERVAL
                    if idle >= KEEPALIVE_SECONDS:
                        idle = 0.0
                        yield ": keepalive\n\n"
                    continue
                idle = 0.0
                yield as_sse(event)
        finally:
            if task.done():
                streams.unregister(operation)
            else:
                streams.abort(operation)

    return StreamingResponse(events(), media_type="text/event-stream", headers=SSE_HEADERS)


@setup_router.post("/setup/prepare")
async def prepare_setup(request: SetupRequest, tickets=Depends(get_ticket_store)):
    request.validate_fields()
    return {"ticket": tickets.put(request.model_dump(), kind="setup")}


@setup_router.get("/setup-stream")
async def setup_stream(
    request: Request,
    ticket: str = Query(""),
    tickets=Depends(get_ticket_store),
    config_store=Depends(get_config_store),
    port_allocator=Depends(get_port_allocator),
    runner=Depends(get_runner),
    streams=Depends(get_stream_manager),
    settings=Depends(get_settings),
    logger=Depends(get_logger),
):
    setup_request = SetupRequest(**tickets.redeem(ticket, kind="setup"))
    pipeline = SetupPipeline(
        setup_request,
        config_store=config_store,
        port_allocator=port_allocator,
        runner=runner,
        logger=logger,
        provider_base_url=settings.get("provider_base_url", "https://code.evolink.ai"),
    )
    logger.info(f"[{setup_request.profile}] setup started ({setup_request.model}, {setup_request.channel})")

    async def start(on_progress):
        pipeline.on_progress = on_progress
        result = await pipeline.run()
        return {
            "profile": result.profile,
            "port": result.port,
            "configPath": result.config_path,
            "warnings": result.warnings,
        }

    return progress_stream(
        request, streams, logger, "setup", setup_request.profile, start, "Done", pipeline
    )


@setup_router.post("/connect/prepare")
async def prepare_connect(request: ConnectRequest, tickets=Depends(get_ticket_store)):
    request.validate_fields()
    return {"ticket": tickets.put(request.model_dump(), kind="connect")}


@setup_router.get("/connect-stream")
async def connect_stream(
    request: Request,
    ticket: str = Query(""),
    tickets=Depends(get_ticket_store),
    config_store=Depends(get_config_store),
    runner=Depends(get_runner),
    streams=Depends(get_stream_manager),
    logger=Depends(get_logger),
):
    connect_request = ConnectRequest(**tickets.redeem(ticket, kind="connect"))

    async def start(on_progress):
        return await connect_user(
            connect_request, config_store, runner, logger, on_progress=on_progress
        )

    return progress_stream(
        request, streams, logger, "connect", connect_request.profile, start, "Connected"
    )
