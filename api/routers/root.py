from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import HTMLResponse
from api.middleware.auth_middleware import is_authenticated, require_session
from utils.dependencies import get_logger, get_registry, get_session_auth, get_settings
from utils.model_catalog import MODEL_CATALOG
import asyncio, json

STATE_PLACEHOLDER = "<!--SERVER_STATE-->"

root_router = APIRouter()


def safe_json(value) -> str:
    """JSON that can sit inside a <script> tag."""
    return json.dumps(value).replace("<", "\\u003c")


def read_page(path):
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


@root_router.get("/")
async def index(
    request: Request,
    registry=Depends(get_registry),
    session_auth=Depends(get_session_auth),
    settings=Depends(get_settings),
    logger=Depends(get_logger),
):
    authenticated = is_authenticated(request, session_auth, settings)
    state = {
        "auth": {"enabled": session_auth.enabled, "authenticated": authenticated},
        "models": MODEL_CATALOG,
        "profiles": [],
    }
    if authenticated:
        state["profiles"] = [info.to_response() for info in await registry.list_info()]

    page = settings.get("index_html")
    if not page:
        return state
    try:
        html = await run_in_threadpool(read_page, page)
    except OSError as e:
        logger.error(f"Unable to read page {page}: {e}")
        return state
    script = f"<script>window.__STATE__={safe_json(state)}</script>"
    if STATE_PLACEHOLDER in html:
        html = html.replace(STATE_PLACEHOLDER, script)
    else:
        html = html.replace("</head>", script + "</head>", 1)
    return HTMLResponse(html)


@root_router.get("/health")
async def health():
    return {"status": "ok"}


@root_router.post("/shutdown", dependencies=[Depends(require_session)])
async def shutdown(request: Request, logger=Depends(get_logger)):
    logger.info("Shutdown requested")
    server = getattr(request.app.state, "server", None)
    if server is not None:
        # let the response go out before uvicorn starts closing connections
        asyncio.get_running_loop().call_later(0.2, setattr, server, "should_exit", True)
    return {"ok": True}
