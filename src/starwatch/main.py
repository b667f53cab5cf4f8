"""
Main application entry point for Starwatch.

This module sets up the FastAPI application, configures logging, wires the
services together and starts the fleet scheduler.
"""

import logging
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from typing import Any

import structlog
from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from . import __version__
from .config import Settings, get_settings
from .exceptions import AuthenticationError, PersistenceError, RemoteAPIError
from .formatting import censor_string
from .github_client import GitHubClient
from .models import UserRecord
from .notifier import Notifier, NullNotifier, TelegramNotifier
from .polling.cycle import PollCycleEngine
from .polling.metrics import collect_statistics
from .polling.scheduler import FleetScheduler
from .state.manager import UserStore, UserStoreFactory

logger = structlog.get_logger(__name__)


def setup_logging(settings: Settings) -> None:
    """Configure structured logging."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level), format="%(message)s"
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            (
                structlog.processors.JSONRenderer()
                if settings.log_format == "json"
                else structlog.dev.ConsoleRenderer()
            ),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


@dataclass
class Services:
    """The long-lived components of a running service."""

    settings: Settings
    store: UserStore
    github_client: GitHubClient
    notifier: Notifier
    engine: PollCycleEngine
    scheduler: FleetScheduler


def build_services(settings: Settings) -> Services:
    """Create the store, clients, engine and scheduler from the settings."""
    store_config = settings.store_config
    store = UserStoreFactory.create_store(store_config.backend, store_config.url)
    github_client = GitHubClient(settings)

    notifier: Notifier
    if settings.telegram_bot_token:
        notifier = TelegramNotifier(settings)
    else:
        logger.warning("No Telegram bot token configured, notifications are dropped")
        notifier = NullNotifier()

    engine = PollCycleEngine(github_client, store, notifier, settings)
    scheduler = FleetScheduler(engine, store, settings)
    return Services(settings, store, github_client, notifier, engine, scheduler)


class CredentialRequest(BaseModel):
    """Body of a credential update."""

    token: str = Field(..., min_length=1, description="GitHub personal access token")


def create_app(
    settings: Settings | None = None,
    services_factory: Callable[[Settings], Services] = build_services,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        settings: Settings to use instead of the environment
        services_factory: Builds the services when the app starts

    Returns:
        FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan manager."""
        current_settings = settings or get_settings()
        polling_config = current_settings.polling_config
        setup_logging(current_settings)

        logger.info("Starting Starwatch")
        logger.info(
            "Configuration loaded",
            github_api_url=current_settings.github_api_url,
            state_backend=current_settings.state_backend,
            poll_interval_seconds=polling_config.interval_seconds,
            debug=current_settings.debug,
        )

        services = services_factory(current_settings)
        app.state.services = services

        if polling_config.enabled:
            await services.scheduler.start()

        yield

        logger.info("Shutting down Starwatch")
        await services.scheduler.stop()
        await services.notifier.aclose()
        await services.store.close()

    app = FastAPI(
        title="Starwatch",
        description="Notifications about new commits and issues on starred repositories",
        version=__version__,
        lifespan=lifespan,
    )

    def get_services(request: Request) -> Services:
        return request.app.state.services

    async def load_user(services: Services, user_id: int) -> UserRecord:
        try:
            user = await services.store.get(user_id)
        except PersistenceError as e:
            logger.error("Unable to load user", user_id=user_id, error=str(e))
            raise HTTPException(status_code=503, detail="User store unavailable") from e
        if user is None:
            raise HTTPException(status_code=404, detail="Unknown user")
        return user

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {"message": "Starwatch", "version": __version__, "status": "active"}

    @app.get("/health")
    async def health_check(request: Request) -> dict[str, Any]:
        """Health check endpoint."""
        services = get_services(request)
        store_healthy = await services.store.health_check()
        last_tick = services.scheduler.performance.last_tick
        return {
            "status": "healthy" if store_healthy else "unhealthy",
            "store": services.store.get_stats(),
            "scheduler_running": services.scheduler.is_running(),
            "last_tick": last_tick.to_dict() if last_tick else None,
            "averages": services.scheduler.performance.get_averages(),
        }

    @app.post("/tick")
    async def run_tick(request: Request) -> dict[str, Any]:
        """Run a tick on demand and wait for it to finish."""
        metrics = await get_services(request).scheduler.tick()
        return metrics.to_dict()

    @app.get("/statistics")
    async def statistics(request: Request) -> dict[str, int]:
        """Count users, users with a token and users with an error."""
        try:
            users = await get_services(request).store.get_all()
        except PersistenceError as e:
            raise HTTPException(status_code=503, detail="User store unavailable") from e
        return collect_statistics(users)

    @app.get("/users/{user_id}")
    async def user_info(user_id: int, request: Request) -> dict[str, Any]:
        """Show what is stored about a user, with the token censored."""
        user = await load_user(get_services(request), user_id)
        info = user.to_dict()
        info["credential"] = censor_string(user.credential) or None
        return info

    @app.post("/users/{user_id}/cycle")
    async def run_user_cycle(user_id: int, request: Request) -> dict[str, Any]:
        """Run one poll cycle for a single user."""
        services = get_services(request)
        await load_user(services, user_id)
        outcome = await services.scheduler.run_single(user_id)
        if outcome is None:
            raise HTTPException(status_code=409, detail="User has no GitHub token")
        return {"user_id": user_id, "outcome": outcome.value}

    @app.get("/users/{user_id}/projects")
    async def user_projects(user_id: int, request: Request) -> dict[str, Any]:
        """List the starred repositories a user is notified about."""
        services = get_services(request)
        user = await load_user(services, user_id)
        if not user.is_eligible:
            raise HTTPException(status_code=409, detail="User has no GitHub token")

        try:
            session = await services.github_client.authenticate(user.credential)
        except AuthenticationError as e:
            raise HTTPException(status_code=401, detail="Token rejected") from e
        except RemoteAPIError as e:
            raise HTTPException(status_code=502, detail="GitHub unreachable") from e

        try:
            projects = await session.list_starred_projects()
        except RemoteAPIError as e:
            logger.warning("Unable to load projects", user_id=user_id, error=str(e))
            raise HTTPException(status_code=502, detail="Unable to list projects") from e
        finally:
            session.close()

        return {
            "user_id": user_id,
            "projects": [asdict(project) for project in projects],
        }

    @app.put("/users/{user_id}/credential")
    async def set_credential(
        user_id: int, body: CredentialRequest, request: Request
    ) -> dict[str, Any]:
        """Verify a token and activate the user with it."""
        services = get_services(request)
        token = body.token.strip()

        try:
            session = await services.github_client.authenticate(token)
        except AuthenticationError as e:
            raise HTTPException(status_code=401, detail="Token rejected") from e
        except RemoteAPIError as e:
            raise HTTPException(status_code=502, detail="GitHub unreachable") from e

        try:
            identity = await session.current_identity()
        finally:
            session.close()

        try:
            async with services.scheduler.tick_lock:
                user = await services.store.get_or_create(user_id)
                user.activate(token, services.engine.clock())
                await services.store.put(user)
        except PersistenceError as e:
            logger.error("Unable to save user", user_id=user_id, error=str(e))
            raise HTTPException(status_code=503, detail="User store unavailable") from e

        logger.info("Credential activated", user_id=user_id, login=identity.login)
        return {"user_id": user_id, "login": identity.login, "state": user.state.value}

    @app.delete("/users/{user_id}/credential")
    async def delete_credential(user_id: int, request: Request) -> dict[str, Any]:
        """Forget a user's token and reset their watermark."""
        services = get_services(request)
        async with services.scheduler.tick_lock:
            user = await load_user(services, user_id)
            user.revoke()
            try:
                await services.store.put(user)
            except PersistenceError as e:
                raise HTTPException(status_code=503, detail="User store unavailable") from e
        return {"user_id": user_id, "state": user.state.value}

    return app


app = create_app()


def main() -> None:
    """Main entry point."""
    import uvicorn

    settings = get_settings()
    server_config = settings.server_config
    setup_logging(settings)

    logger.info(
        "Starting server",
        host=server_config.host,
        port=server_config.port,
        debug=server_config.debug,
    )

    uvicorn.run(
        "starwatch.main:app",
        host=server_config.host,
        port=server_config.port,
        reload=server_config.debug,
        log_config=None,  # We handle logging ourselves
    )


if __name__ == "__main__":
    main()
