"""
FastAPI server for the salah API. Run with run_api_server(app) in a background thread.
Central endpoint: GET /api/tasks. Routers from salah.prayer.api and salah.notifications.api
(get_router(salah_app)) are mounted under /api/prayer/ and /api/notifications/.
Docs when enabled: http://<host>:<port>/docs
"""
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from salah.core.errors import FutureDateError, PrematureMarkError, StorageError, UnavailableError
from salah.core.models import get_all_task_schedules
from salah.notifications import api as notifications_api
from salah.prayer import api as prayer_api

logger = logging.getLogger(__name__)

_ROUTERS = (
    ("/api/prayer", prayer_api),
    ("/api/notifications", notifications_api),
)

# exception type -> HTTP status
_ERROR_STATUS = (
    (PrematureMarkError, 409),
    (FutureDateError, 422),
    (StorageError, 503),
    (UnavailableError, 503),
)


def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Serialize datetime to ISO string (UTC)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def _error_handler(status_code: int):
    def handler(request: Request, exc: Exception) -> JSONResponse:
        logger.info(f"{request.method} {request.url.path} -> {status_code}: {exc}")
        return JSONResponse(status_code=status_code, content={"detail": str(exc), "error": type(exc).__name__})
    return handler


def create_app(salah_app: Any) -> FastAPI:
    """Create FastAPI app with routes that use the given SalahApp instance."""
    app = FastAPI(title="Salah API", description="Prayer times, completion progress and notifications")

    for exc_type, status_code in _ERROR_STATUS:
        app.add_exception_handler(exc_type, _error_handler(status_code))

    @app.get("/api/tasks")
    def list_tasks() -> Dict[str, Any]:
        """List scheduled tasks: DB schedules and active in-memory timers."""
        db_schedules = get_all_task_schedules(salah_app.database)
        for row in db_schedules:
            row["next_run_at"] = _serialize_datetime(row.get("next_run_at"))
            row["last_run_at"] = _serialize_datetime(row.get("last_run_at"))

        active_timers = salah_app.task_manager.get_active_timers()
        active_list = [
            {"name": t["name"], "next_run_at": _serialize_datetime(t["next_run_at"])}
            for t in active_timers
        ]

        return {"db_schedules": db_schedules, "active_timers": active_list}

    for prefix, module in _ROUTERS:
        app.include_router(module.get_router(salah_app), prefix=prefix)

    return app


def run_api_server(salah_app: Any) -> None:
    """
    Start the API server in a daemon thread if api.enabled is true.
    Reads api.host (default 127.0.0.1) and api.port (default 8765) from config.
    """
    api_config = salah_app.config.data.get("api") or {}
    enabled = api_config.get("enabled", False)
    config_file = getattr(salah_app.config, "config_file", None)
    logger.info(
        f"API config: enabled={enabled}, config_file={config_file}, api section={list(api_config.keys())}"
    )
    if not enabled:
        logger.info(
            "API server not started: set api.enabled to true in your config file to enable."
        )
        return
    host = api_config.get("host", "127.0.0.1")
    port = int(api_config.get("port", 8765))
    fastapi_app = create_app(salah_app)

    def run_uvicorn():
        try:
            import uvicorn
            logger.info(f"API server listening at http://{host}:{port} (docs at /docs)")
            uvicorn.run(fastapi_app, host=host, port=port)
        except Exception as e:
            logger.exception(f"API server thread failed: {e}")

    thread = threading.Thread(target=run_uvicorn, daemon=True)
    thread.start()
    logger.info("API server thread started.")
