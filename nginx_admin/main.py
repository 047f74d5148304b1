from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, Optional, Type
import os
import time
import logging

import uvicorn

from .config import (
    BackupStore,
    BadRequestError,
    CommandTimeoutError,
    ConfigurationError,
    ConfigurationManager,
    ControlError,
    NotFoundError,
    PathLocks,
    ReloadError,
)
from .nginx import CommandResult, ExternalCommand, NginxController, SubprocessCommand
from .settings import Settings

__version__ = "0.1.0"

# Configure logging
log_level = os.getenv('LOG_LEVEL', 'info').upper()
logging.basicConfig(
    level=getattr(logging, log_level, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Apply the configured log level to the app's loggers."""
    logging.getLogger().setLevel(getattr(logging, level.upper(), logging.INFO))


# Pydantic models for API requests
class ContentRequest(BaseModel):
    content: str


class CreateServerRequest(BaseModel):
    name: str = ""
    content: Optional[str] = None


class RenameServerRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    new_name: str = Field(default="", alias="newName")


# Startup/shutdown event handler
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the configuration manager and nginx controller on startup."""
    settings: Settings = app.state.settings

    logger.info("=== nginx admin starting ===")
    logger.info(f"nginx binary: {settings.nginx_bin}")
    logger.info(f"Config file: {settings.config_path}")
    logger.info(f"Servers dir: {settings.servers_dir}")
    logger.info(f"Backup dir: {settings.backups_dir}")
    logger.info(f"Command timeout: {settings.command_timeout}s")

    command = app.state.command or SubprocessCommand(timeout=settings.command_timeout)
    controller = NginxController(
        command,
        nginx_bin=settings.nginx_bin,
        config_path=settings.config_path,
        process_name=settings.process_name
    )
    backups = BackupStore(settings.backups_dir, **app.state.backup_options)
    app.state.controller = controller
    app.state.manager = ConfigurationManager(
        config_path=settings.config_path,
        servers_dir=settings.servers_dir,
        backups=backups,
        controller=controller,
        locks=PathLocks()
    )

    yield

    logger.info("=== nginx admin shutting down ===")


def get_manager(request: Request) -> ConfigurationManager:
    return request.app.state.manager


def get_controller(request: Request) -> NginxController:
    return request.app.state.controller


def _error(status_code: int, error: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, **extra})


def _raise_for_command(
    result: CommandResult,
    error: str,
    error_class: Type[ControlError] = ControlError
) -> None:
    """Turn a failed nginx control command into a ConfigurationError."""
    if result.exit_ok:
        return
    if result.timed_out:
        raise CommandTimeoutError(error, output=result.output)
    raise error_class(error, output=result.output)


router = APIRouter(prefix="/api")


@router.get("/health")
async def health_check():
    """Health check endpoint for Docker and monitoring."""
    return {"status": "ok", "version": __version__}


# Primary configuration

@router.get("/config")
async def get_config(manager: ConfigurationManager = Depends(get_manager)):
    return await manager.read_config()


@router.put("/config")
async def save_config(
    request: ContentRequest,
    manager: ConfigurationManager = Depends(get_manager)
):
    """
    Save, test and reload the primary configuration.

    Returns:
        200 {message, backup, output, reload}
        400 {error, output, backup} when nginx -t fails (change rolled back)
        500 {error, output, backup} when the reload fails (change kept)
    """
    outcome = await manager.save_config(request.content)
    outcome.raise_for_error()

    return {
        "message": "saved, tested and reloaded",
        "backup": outcome.backup,
        "output": outcome.validation_output,
        "reload": outcome.reload_output
    }


@router.post("/config/test")
async def test_config(manager: ConfigurationManager = Depends(get_manager)):
    result = await manager.test_config()
    status_code = 200 if result.exit_ok else (504 if result.timed_out else 400)
    return JSONResponse(
        status_code=status_code,
        content={"success": result.exit_ok, "output": result.output}
    )


@router.post("/config/reload")
async def reload_config(controller: NginxController = Depends(get_controller)):
    result = await controller.reload()
    _raise_for_command(result, "reload failed", ReloadError)
    return {"message": "reloaded", "output": result.output}


# nginx process

@router.get("/nginx/status")
async def nginx_status(controller: NginxController = Depends(get_controller)):
    return await controller.status()


CONTROL_ACTIONS = {
    "start": "started",
    "stop": "stopped",
    "restart": "restarted",
}


@router.post("/nginx/{action}")
async def nginx_control(action: str, controller: NginxController = Depends(get_controller)):
    if action not in CONTROL_ACTIONS:
        raise NotFoundError(f"unknown action: {action}")

    result = await getattr(controller, action)()
    _raise_for_command(result, f"{action} failed")
    return {"message": CONTROL_ACTIONS[action], "output": result.output}


# Server files

@router.get("/servers")
async def list_servers(manager: ConfigurationManager = Depends(get_manager)):
    return {"servers": manager.list_servers()}


@router.get("/servers/{name}")
async def get_server(name: str, manager: ConfigurationManager = Depends(get_manager)):
    return await manager.read_server(name)


@router.put("/servers/{name}")
async def save_server(
    name: str,
    request: ContentRequest,
    manager: ConfigurationManager = Depends(get_manager)
):
    outcome = await manager.save_server(name, request.content)
    outcome.raise_for_error()

    return {
        "message": "saved and reloaded",
        "backup": outcome.backup,
        "output": outcome.reload_output
    }


@router.post("/servers")
async def create_server(
    request: CreateServerRequest,
    manager: ConfigurationManager = Depends(get_manager)
):
    created = await manager.create_server(request.name, request.content)
    return {"message": "file created", "name": created["name"], "path": created["path"]}


@router.patch("/servers/{name}")
async def rename_server(
    name: str,
    request: RenameServerRequest,
    manager: ConfigurationManager = Depends(get_manager)
):
    renamed = await manager.rename_server(name, request.new_name)
    return {
        "message": "file renamed",
        "oldName": renamed["old_name"],
        "newName": renamed["new_name"]
    }


@router.delete("/servers/{name}")
async def delete_server(name: str, manager: ConfigurationManager = Depends(get_manager)):
    backup = await manager.delete_server(name)
    return {"message": "file deleted", "backup": backup}


# Backups

@router.get("/backups")
async def list_backups(manager: ConfigurationManager = Depends(get_manager)):
    return {"backups": manager.list_backups()}


@router.post("/backups")
async def create_backup(manager: ConfigurationManager = Depends(get_manager)):
    name = await manager.create_backup()
    return {"message": "backup created", "name": name}


@router.post("/backups/{name}/restore")
async def restore_backup(name: str, manager: ConfigurationManager = Depends(get_manager)):
    restored = await manager.restore_backup(name)
    return {
        "message": "restored",
        "artifact": restored["artifact"],
        "backup": restored["backup"],
        "valid": restored["valid"],
        "output": restored["output"]
    }


@router.delete("/backups/{name}")
async def delete_backup(name: str, manager: ConfigurationManager = Depends(get_manager)):
    await manager.delete_backup(name)
    return {"message": "backup deleted", "name": name}


def create_app(
    settings: Optional[Settings] = None,
    command: Optional[ExternalCommand] = None,
    backup_options: Optional[Dict[str, Any]] = None
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Startup settings (loaded from the environment if omitted)
        command: Runner for external programs (subprocess if omitted)
        backup_options: Extra keyword arguments for BackupStore (e.g. clock)
    """
    app = FastAPI(
        title="nginx admin",
        description="nginx configuration management with backups and safe reloads",
        version=__version__,
        lifespan=lifespan
    )
    app.state.settings = settings or Settings.load()
    configure_logging(app.state.settings.log_level)
    app.state.command = command
    app.state.backup_options = backup_options or {}

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"]
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log method, path, status and duration of every request."""
        started = time.monotonic()
        response = await call_next(request)
        elapsed_ms = (time.monotonic() - started) * 1000
        logger.info(f"{request.method} {request.url.path} {response.status_code} {elapsed_ms:.1f}ms")
        return response

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(_: Request, exc: ConfigurationError):
        if exc.status_code >= 500:
            logger.error(f"Configuration error: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def bad_request_handler(_: Request, exc: RequestValidationError):
        error = BadRequestError("invalid request", details=jsonable_errors(exc))
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    @app.exception_handler(Exception)
    async def unexpected_error_handler(_: Request, exc: Exception):
        logger.error(f"Unhandled error: {exc}", exc_info=True)
        return _error(500, f"Internal error: {str(exc)}")

    app.include_router(router)
    return app


def jsonable_errors(exc: RequestValidationError) -> list:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
        for error in exc.errors()
    ]


def run() -> None:
    """Console entry point: load settings and serve with uvicorn."""
    settings = Settings.load()
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower()
    )


if __name__ == "__main__":
    run()
