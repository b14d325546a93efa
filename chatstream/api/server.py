"""API server implementation."""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chatstream.api.auth import APIAuth
from chatstream.api.routes import router
from chatstream.config import ChatConfig
from chatstream.dispatcher import BackendDispatcher, build_dispatcher
from chatstream.errors import ChatError, ValidationError, sanitize_for_logging
from chatstream.orchestrator import Orchestrator
from chatstream.storage import ConversationStore, InMemoryConversationStore

logger = logging.getLogger(__name__)


def create_app(
    config: ChatConfig,
    dispatcher: Optional[BackendDispatcher] = None,
    store: Optional[ConversationStore] = None,
    auth: Optional[APIAuth] = None,
    orchestrator: Optional[Orchestrator] = None,
) -> FastAPI:
    """
    Create FastAPI application.

    Collaborators default to the configured backends, an in-memory store and
    the token file from config; tests pass their own.
    """
    if orchestrator is None:
        orchestrator = Orchestrator(
            config,
            dispatcher if dispatcher is not None else build_dispatcher(config),
            store if store is not None else InMemoryConversationStore(),
        )
    if auth is None:
        token_file = Path(config.api.token_file) if config.api.token_file else None
        auth = APIAuth(token_file=token_file, user_id=config.api.user_id)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.orchestrator.dispatcher.close()

    app = FastAPI(
        title="chatstream API",
        description="Streaming chat orchestration over multiple LLM backends",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.orchestrator = orchestrator
    app.state.auth = auth

    # CORS middleware (allow localhost for UI)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
        body = exc.to_dict()
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {sanitize_for_logging(body)}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected [{exc.code}]: {exc.message}")
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
        return JSONResponse(status_code=exc.status_code, content=body, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        error = ValidationError("Invalid request data", details=jsonable_encoder(exc.errors()))
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"{request.method} {request.url.path} raised an unexpected error")
        return JSONResponse(status_code=500, content=ChatError("Internal server error").to_dict())

    # Include routes
    app.include_router(router)

    return app


def start_server(config: ChatConfig) -> None:
    """Start the API server."""
    token_file = Path(config.api.token_file) if config.api.token_file else None
    auth = APIAuth(token_file=token_file, user_id=config.api.user_id)
    token = auth.get_token()

    # Print token to stderr (for UI to read)
    print(f"API token: {token}", file=sys.stderr)
    print(f"Token saved to: {auth.token_file}", file=sys.stderr)

    for problem in config.validate_environment():
        print(f"Warning: {problem}", file=sys.stderr)

    # Parse bind address
    bind = config.api.bind
    if ":" in bind:
        host, port_str = bind.rsplit(":", 1)
        port = int(port_str)
    else:
        host = bind
        port = 4830

    app = create_app(config, auth=auth)

    print(f"Starting API server on {host}:{port}", file=sys.stderr)
    print(f"API documentation: http://{host}:{port}/docs", file=sys.stderr)

    uvicorn.run(app, host=host, port=port, log_level=config.log_level.lower())
