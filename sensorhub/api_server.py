import logging
from typing import Any, Dict, List

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from sensorhub.errors import ConnectivityError, IdentifierMismatchError, MalformedInputError, StoreError
from sensorhub.hierarchy.model import SensorHierarchy
from sensorhub.hierarchy.validator import validate_update_target
from sensorhub.hierarchy_store import HierarchyStore, WriteResult, WriteStatus
from sensorhub.timezone_utils import now_iso

log = logging.getLogger(__name__)

ACCESS_FORBIDDEN_MESSAGE = "Access forbidden"
BAD_REQUEST_MESSAGE = "Bad Request"
INTERNAL_SERVER_ERROR_MESSAGE = "Internal Server Error"
NOT_FOUND_ERROR_MESSAGE = "Resource not found"

WRITE_METHODS = {"POST", "PUT", "DELETE"}


def _not_found() -> Response:
    return PlainTextResponse(NOT_FOUND_ERROR_MESSAGE, status_code=404)


def _collisions(result: WriteResult) -> Response:
    return JSONResponse({"collisions": result.collisions}, status_code=409)


def create_api(store: HierarchyStore, cfg) -> FastAPI:
    """
    Create a FastAPI app serving the sensor hierarchies of ``store``.

    ``cfg`` is the ``HubConfig``; its ``demo`` flag turns every write request
    into a 403 before it reaches the store.
    """
    app = FastAPI(title="SensorHub Sensor Management API")

    # Demo mode is enforced here, in front of every route
    @app.middleware("http")
    async def reject_writes_in_demo_mode(request: Request, call_next):
        if cfg.demo and request.method in WRITE_METHODS:
            log.info(f"Demo mode: rejected {request.method} {request.url.path}")
            return PlainTextResponse(ACCESS_FORBIDDEN_MESSAGE, status_code=403)
        return await call_next(request)

    # Add request logging middleware
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        log.debug(f"API request: {request.method} {request.url}")
        try:
            response = await call_next(request)
            log.info(f"API response: {request.method} {request.url.path} {response.status_code}")
            return response
        except Exception as e:
            log.error(f"API request failed: {e}", exc_info=True)
            raise

    if cfg.api.cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        log.info(f"Malformed request body for {request.method} {request.url.path}")
        return PlainTextResponse(BAD_REQUEST_MESSAGE, status_code=400)

    @app.exception_handler(MalformedInputError)
    async def handle_malformed_input(request: Request, exc: MalformedInputError):
        log.info(f"Malformed sensor hierarchy for {request.method} {request.url.path}: {exc}")
        return PlainTextResponse(BAD_REQUEST_MESSAGE, status_code=400)

    @app.exception_handler(IdentifierMismatchError)
    async def handle_identifier_mismatch(request: Request, exc: IdentifierMismatchError):
        log.info(str(exc))
        return PlainTextResponse(BAD_REQUEST_MESSAGE, status_code=400)

    @app.exception_handler(StoreError)
    @app.exception_handler(ConnectivityError)
    async def handle_store_error(request: Request, exc: Exception):
        log.error(f"Store failure during {request.method} {request.url.path}: {exc}")
        return PlainTextResponse(INTERNAL_SERVER_ERROR_MESSAGE, status_code=500)

    @app.get("/api/health")
    def api_health():
        """Health check: API is up and the store is reachable."""
        try:
            store.database.ping()
        except ConnectivityError as e:
            return JSONResponse({"status": "error", "message": str(e)}, status_code=503)
        return {"status": "ok", "message": "API server is running", "timestamp": now_iso(store.tz)}

    @app.get("/sensor-hierarchy/")
    def api_list_hierarchies() -> List[Dict[str, str]]:
        """Identifier and name of every stored hierarchy."""
        return store.summaries()

    @app.get("/sensor-hierarchy/{identifier}")
    def api_get_hierarchy(identifier: str):
        hierarchy = store.get(identifier)
        if hierarchy is None:
            return _not_found()
        return hierarchy.to_dict()

    @app.post("/sensor-hierarchy")
    def api_create_hierarchy(payload: Dict[str, Any]):
        """Create a new hierarchy. Answers 409 with the colliding identifiers if any are taken."""
        hierarchy = SensorHierarchy.from_dict(payload)
        result = store.create(hierarchy)
        if result.status is WriteStatus.COLLISION:
            return _collisions(result)
        return Response(status_code=204)

    @app.put("/sensor-hierarchy/{identifier}")
    def api_update_hierarchy(identifier: str, payload: Dict[str, Any]):
        """Replace a stored hierarchy. The root identifier of the body must match the path."""
        hierarchy = SensorHierarchy.from_dict(payload)
        validate_update_target(identifier, hierarchy)
        result = store.update(hierarchy)
        if result.status is WriteStatus.NOT_FOUND:
            return _not_found()
        if result.status is WriteStatus.COLLISION:
            return _collisions(result)
        return {"status": "success", "changes": [event.to_dict() for event in result.events]}

    @app.delete("/sensor-hierarchy/{identifier}")
    def api_delete_hierarchy(identifier: str):
        result = store.delete(identifier)
        if result.status is WriteStatus.NOT_FOUND:
            return _not_found()
        return {"status": "success"}

    return app


def run_api(fastapi_app: FastAPI, host: str, port: int) -> None:
    """Serve the API in the calling thread until shutdown."""
    log.info(f"Starting API server on {host}:{port}")
    uvicorn.Server(_server_config(fastapi_app, host, port)).run()


def _server_config(fastapi_app: FastAPI, host: str, port: int) -> uvicorn.Config:
    return uvicorn.Config(
        fastapi_app,
        host=host,
        port=port,
        log_level="info",
        access_log=True,
        use_colors=False,
        log_config=None  # Use the application's logging configuration
    )
