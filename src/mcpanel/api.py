import logging
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from mcpanel.config import Settings
from mcpanel.control.dns import create_dns
from mcpanel.control.orchestrator import Orchestrator
from mcpanel.errors import (
    ConflictError,
    PreconditionError,
    ServiceNotReadyError,
    ValidationError,
)
from mcpanel.providers.base import Provider
from mcpanel.providers.factory import create_provider
from mcpanel.providers.scenarios import SCENARIOS
from mcpanel.providers.simulated import SimulatedProvider
from mcpanel.providers.simulated_state import FaultConfig

logger = logging.getLogger(__name__)


VALIDATION_MESSAGES = (
    "Backup name is required",
    "Backup name exceeds maximum length",
    "Backup name cannot be empty",
    "Backup name contains invalid characters",
    "Unknown cost period",
    "Scenario not found",
    "Latency must be",
)

GENERIC_MESSAGES = {
    "status": "Failed to fetch server status",
    "start": "Failed to start server",
    "stop": "Failed to stop server",
    "resume": "Failed to resume server",
    "hibernate": "Failed to hibernate server",
    "backup": "Failed to create backup",
    "restore": "Failed to restore backup",
    "backups": "Failed to list backups",
    "costs": "Failed to fetch cost data",
    "players": "Failed to fetch player count",
    "stackStatus": "Failed to fetch stack status",
    "mock": "Failed to update mock state",
}


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ResumeRequest(CamelModel):
    backup_name: str | None = Field(default=None, alias="backupName")


class BackupRequest(CamelModel):
    name: str | None = None


class RestoreRequest(CamelModel):
    backup_name: str | None = Field(default=None, alias="backupName")
    name: str | None = None


class FaultRequest(CamelModel):
    operation: str
    fail_next: bool = Field(default=False, alias="failNext")
    always_fail: bool = Field(default=False, alias="alwaysFail")
    error_code: str | None = Field(default=None, alias="errorCode")
    error_message: str | None = Field(default=None, alias="errorMessage")


class LatencyRequest(CamelModel):
    latency_ms: int = Field(alias="latencyMs")


class ScenarioRequest(CamelModel):
    scenario: str


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _ok(data, status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": True, "data": jsonable_encoder(data), "timestamp": _timestamp()},
    )


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, "timestamp": _timestamp()},
    )


def error_response(operation: str, exc: Exception) -> JSONResponse:
    """Map an exception to a status code and a message that is safe to show a client."""
    if isinstance(exc, (ConflictError, ServiceNotReadyError)):
        logger.info("[%s] %s", operation.upper(), exc)
        return _error(exc.message, 409)
    if isinstance(exc, ValidationError):
        logger.info("[%s] Validation error: %s", operation.upper(), exc)
        if any(pattern in exc.message for pattern in VALIDATION_MESSAGES):
            return _error(exc.message, 400)
        return _error(GENERIC_MESSAGES.get(operation, "Failed to process request"), 400)
    if isinstance(exc, PreconditionError):
        logger.info("[%s] %s", operation.upper(), exc)
        return _error(exc.message, 400)
    logger.error("[%s] Error: %s", operation.upper(), exc, exc_info=exc)
    return _error(GENERIC_MESSAGES.get(operation, "Failed to process request"), 500)


async def _respond(operation: str, call) -> JSONResponse:
    try:
        data = await call()
    except Exception as e:
        return error_response(operation, e)
    return _ok(data)


def create_app(settings: Settings | None = None, provider: Provider | None = None) -> FastAPI:
    settings = settings or Settings()
    provider = provider or create_provider(settings)
    orchestrator = Orchestrator(provider, dns=create_dns(settings), settings=settings)

    app = FastAPI(title="Minecraft Control Panel API", version="0.1.0")
    app.state.settings = settings
    app.state.provider = provider
    app.state.orchestrator = orchestrator

    @app.get("/api/status")
    async def status():
        return await _respond("status", orchestrator.status)

    @app.post("/api/start")
    async def start():
        return await _respond("start", orchestrator.start)

    @app.post("/api/stop")
    async def stop():
        return await _respond("stop", orchestrator.stop)

    @app.post("/api/hibernate")
    async def hibernate():
        return await _respond("hibernate", orchestrator.hibernate)

    @app.post("/api/resume")
    async def resume(req: ResumeRequest | None = None):
        backup_name = req.backup_name if req else None
        return await _respond("resume", lambda: orchestrator.resume(backup_name=backup_name))

    @app.post("/api/backup")
    async def backup(req: BackupRequest | None = None):
        name = req.name if req else None
        return await _respond("backup", lambda: orchestrator.backup(name=name))

    @app.post("/api/restore")
    async def restore(req: RestoreRequest | None = None):
        name = (req.backup_name or req.name) if req else None
        return await _respond("restore", lambda: orchestrator.restore(name=name))

    @app.get("/api/backups")
    async def backups():
        async def call():
            items = await provider.list_backups()
            return {"backups": items, "count": len(items)}
        return await _respond("backups", call)

    @app.get("/api/costs")
    async def costs(period: str = "current-month"):
        return await _respond("costs", lambda: provider.get_costs(period))

    @app.get("/api/players")
    async def players():
        return await _respond("players", provider.get_player_count)

    @app.get("/api/stack-status")
    async def stack_status():
        async def call():
            stack = await provider.get_stack_status(settings.stack_name)
            return {"exists": stack is not None, "stack": stack}
        return await _respond("stackStatus", call)

    if isinstance(provider, SimulatedProvider):
        _add_mock_routes(app, provider)

    return app


def _add_mock_routes(app: FastAPI, provider: SimulatedProvider) -> None:
    """Simulation controls. Only registered when the simulated backend is active."""

    @app.get("/api/mock/state")
    async def mock_state():
        return await _respond("mock", provider.snapshot)

    @app.post("/api/mock/reset")
    async def mock_reset():
        async def call():
            await provider.reset()
            return {"message": "Mock state reset"}
        return await _respond("mock", call)

    @app.get("/api/mock/scenario")
    async def mock_scenarios():
        return _ok({
            "current": provider.state.scenario,
            "scenarios": [{"name": s.name, "description": s.description} for s in SCENARIOS.values()],
        })

    @app.post("/api/mock/scenario")
    async def mock_apply_scenario(req: ScenarioRequest):
        async def call():
            await provider.apply_scenario(req.scenario)
            return {"scenario": req.scenario}
        return await _respond("mock", call)

    @app.post("/api/mock/fault")
    async def mock_fault(req: FaultRequest):
        fault = FaultConfig(
            fail_next=req.fail_next or not req.always_fail,
            always_fail=req.always_fail,
        )
        if req.error_code:
            fault.error_code = req.error_code
        if req.error_message:
            fault.error_message = req.error_message

        async def call():
            await provider.set_fault(req.operation, fault)
            return {"operation": req.operation, "fault": fault}
        return await _respond("mock", call)

    @app.delete("/api/mock/fault/{operation}")
    async def mock_clear_fault(operation: str):
        async def call():
            await provider.clear_fault(None if operation == "all" else operation)
            return {"cleared": operation}
        return await _respond("mock", call)

    @app.post("/api/mock/latency")
    async def mock_latency(req: LatencyRequest):
        async def call():
            await provider.set_latency(req.latency_ms)
            return {"latencyMs": req.latency_ms}
        return await _respond("mock", call)
