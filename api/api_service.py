from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from api.middleware.auth_middleware import require_session
from api.routers.auth import auth_router
from api.routers.profiles import profiles_router
from api.routers.root import root_router
from api.routers.setup import setup_router
from utils.dependencies import get_api_state, get_logger
from utils.errors import ManagerError, RateLimitError
import socket, threading, time, uvicorn, webbrowser


@asynccontextmanager
async def lifespan(app: FastAPI):
    api_state = get_api_state()
    await api_state.startup()
    get_logger().info("Control plane ready")
    yield
    await api_state.shutdown()
    get_logger().info("Control plane stopped")


def create_app(version: str = "0.0.0") -> FastAPI:
    app = FastAPI(title="OpenClaw Manager", version=version, lifespan=lifespan)

    @app.exception_handler(ManagerError)
    async def manager_error_handler(request: Request, exc: ManagerError):
        if exc.status_code >= 500:
            get_logger().error(f"{request.method} {request.url.path} failed: {exc.message}")
        headers = None
        if isinstance(exc, RateLimitError) and exc.retry_after:
            headers = {"Retry-After": str(exc.retry_after)}
        return JSONResponse(
            status_code=exc.status_code, content={"error": exc.message}, headers=headers
        )

    app.include_router(root_router)
    app.include_router(auth_router, prefix="/auth", tags=["Auth"])
    app.include_router(
        profiles_router, tags=["Profiles"], dependencies=[Depends(require_session)]
    )
    app.include_router(
        setup_router, tags=["Setup"], dependencies=[Depends(require_session)]
    )
    return app


def pick_free_port(host: str) -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]


def display_host(host: str) -> str:
    return "127.0.0.1" if host in ("0.0.0.0", "::", "") else host


def open_when_listening(url, host, port, logger, timeout=10):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            with socket.create_connection((host, port), timeout=0.5):
                break
        except OSError:
            time.sleep(0.2)
    else:
        logger.warning(f"Server did not come up within {timeout}s; not opening a browser")
        return
    try:
        webbrowser.open(url)
    except webbrowser.Error as e:
        logger.warning(f"Could not open a browser: {e}")


def start_fastapi_process(app, host, port, logger, open_browser=False, log_level="info"):
    if not port:
        port = pick_free_port(host)
    url = f"http://{display_host(host)}:{port}"

    config = uvicorn.Config(app, host=host, port=port, log_level=log_level.lower())
    server = uvicorn.Server(config)
    app.state.server = server

    if open_browser:
        threading.Thread(
            target=open_when_listening, args=(url, display_host(host), port, logger), daemon=True
        ).start()

    logger.info(f"OpenClaw Manager listening on {url}")
    server.run()
    return url
