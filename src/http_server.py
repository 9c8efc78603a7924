"""
HTTP / WebSocket Server

Thin communication layer between clients and the chat orchestrator. It handles
request parsing, response streaming and per-socket sessions only; every chat
decision is delegated to ChatOrchestrator.

Chat streams are newline-delimited JSON: one stream update per line.
"""

import asyncio
import contextlib
import json
import logging
import uuid
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from typing import Any

import uvicorn
from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.chat import ChatOrchestrator, ChatRun, Conversation
from src.chat.errors import ChatError
from src.chat.models import ChatRequest, ErrorUpdate
from src.chat.parts import user_message
from src.chat.prompts import ONBOARDING, ONCALL, AgentProfile, get_profile
from src.clients.model_catalog import AVAILABLE_MODELS, DEFAULT_MODEL, get_model_by_id, get_models_by_provider
from src.config import Configuration
from src.tools.file_server import FileNotFound, list_files, read_file

logger = logging.getLogger(__name__)

NDJSON_MEDIA_TYPE = "application/x-ndjson"
BUSY_MESSAGE = "A response is still streaming; wait for it or clear the session"


# Pydantic models for WebSocket message validation
class ChatPayload(BaseModel):
    """Payload for chat messages with validation."""

    text: str
    provider: str | None = None  # inferred from the model id when omitted
    model_id: str = Field(default=DEFAULT_MODEL.id, alias="modelId")
    profile: str = ONBOARDING.name

    model_config = ConfigDict(populate_by_name=True)


class ApprovalPayload(BaseModel):
    """Human decision on an open approval request."""

    id: str
    approved: bool
    reason: str | None = None


class WebSocketResponse(BaseModel):
    """WebSocket response structure."""

    request_id: str
    status: str  # "processing", "chunk", "completed", "error"
    chunk: dict[str, Any] = Field(default_factory=dict)


@dataclass
class ChatSession:
    """Server-side state of one WebSocket connection."""

    conversation: Conversation = field(default_factory=Conversation)
    profile: AgentProfile = ONBOARDING
    provider: str = DEFAULT_MODEL.provider
    model_id: str = DEFAULT_MODEL.id
    task: asyncio.Task[None] | None = None

    @property
    def busy(self) -> bool:
        return self.task is not None and not self.task.done()

    async def cancel_run(self) -> None:
        """Stop the run in flight, if any, and wait for it to unwind."""
        task, self.task = self.task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task


class ChatServer:
    """
    Pure communication server.

    This class only handles:
    - HTTP chat requests and NDJSON response streaming
    - WebSocket connections and per-socket sessions
    - The mock documentation endpoint and model catalog

    All business logic is delegated to ChatOrchestrator.
    """

    def __init__(self, orchestrator: ChatOrchestrator, configuration: Configuration):
        self.orchestrator = orchestrator
        self.configuration = configuration
        self.sessions: dict[WebSocket, ChatSession] = {}
        self.app = self._create_app()

    def _create_app(self) -> FastAPI:
        """Create and configure FastAPI app."""
        server_config = self.configuration.get_server_config()
        app = FastAPI(title="On-Call Assistant Chat Server")

        app.add_middleware(
            CORSMiddleware,
            allow_origins=server_config.get("allow_origins", ["*"]),
            allow_credentials=server_config.get("allow_credentials", True),
            allow_methods=["*"],
            allow_headers=["*"],
        )

        @app.post("/api/chat")
        async def onboarding_chat(request: Request) -> Response:  # type: ignore
            return await self._handle_chat_request(request, ONBOARDING)

        @app.post("/api/oncall")
        async def oncall_chat(request: Request) -> Response:  # type: ignore
            return await self._handle_chat_request(request, ONCALL)

        @app.get("/api/file-server")
        async def file_server(  # type: ignore
            action: str | None = None,
            file_path: str | None = Query(default=None, alias="filePath"),
        ) -> Response:
            return self._handle_file_server(action, file_path)

        @app.get("/api/models")
        async def models(provider: str | None = None) -> dict[str, Any]:  # type: ignore
            catalog = get_models_by_provider(provider) if provider else AVAILABLE_MODELS
            return {
                "models": [m.model_dump(exclude_none=True) for m in catalog],
                "default": DEFAULT_MODEL.id,
            }

        @app.websocket("/ws/chat")
        async def websocket_endpoint(websocket: WebSocket):  # type: ignore
            await self._handle_websocket_connection(websocket)

        @app.get("/")
        async def root():  # type: ignore
            return {"message": "On-Call Assistant Chat Server"}

        @app.get("/health")
        async def health():  # type: ignore
            return {"status": "healthy"}

        # Prevent static analyzers from marking route handlers as unused
        __keep_for_pyright = (onboarding_chat, oncall_chat, file_server, models, websocket_endpoint, root, health)
        del __keep_for_pyright

        return app

    # ------------------------------------------------------------------
    # HTTP chat
    # ------------------------------------------------------------------

    async def _handle_chat_request(self, request: Request, profile: AgentProfile) -> Response:
        """Validate a chat submission and stream the run, or answer in plain text."""
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return PlainTextResponse("Request body must be valid JSON", status_code=400)

        try:
            run = self.orchestrator.prepare(body, profile)
        except ChatError as e:
            logger.warning("Rejected %s chat request (%d): %s", profile.name, e.status_code, e.message)
            return PlainTextResponse(e.message, status_code=e.status_code)
        except Exception as e:
            logger.error("Error in chat API route: %s", e)
            return PlainTextResponse(str(e) or "Internal server error", status_code=500)

        return StreamingResponse(self._stream_run(request, run), media_type=NDJSON_MEDIA_TYPE)

    async def _stream_run(self, request: Request, run: ChatRun) -> AsyncGenerator[str]:
        watcher = asyncio.create_task(self._watch_disconnect(request, run))
        try:
            async for update in run.stream():
                yield json.dumps(update.to_wire()) + "\n"
        finally:
            watcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watcher

    async def _watch_disconnect(self, request: Request, run: ChatRun) -> None:
        """Cancel ``run`` once the client goes away."""
        poll_seconds = self.configuration.get_server_config().get("disconnect_poll_seconds", 0.5)
        while not run.cancelled:
            if await request.is_disconnected():
                logger.info("Client disconnected, cancelling run")
                run.cancel()
                return
            await asyncio.sleep(poll_seconds)

    # ------------------------------------------------------------------
    # Documentation file server
    # ------------------------------------------------------------------

    @staticmethod
    def _handle_file_server(action: str | None, file_path: str | None) -> Response:
        if action == "list":
            return JSONResponse(list_files())

        if action == "read":
            if not file_path:
                return JSONResponse({"error": "filePath parameter is required"}, status_code=400)
            try:
                return JSONResponse(read_file(file_path))
            except FileNotFound as e:
                return JSONResponse({"error": e.message}, status_code=e.status_code)

        return JSONResponse({"error": "Invalid action. Use 'list' or 'read'"}, status_code=400)

    # ------------------------------------------------------------------
    # WebSocket sessions
    # ------------------------------------------------------------------

    async def _handle_websocket_connection(self, websocket: WebSocket):
        """Handle a WebSocket connection."""
        await self._connect_websocket(websocket)

        message_data: dict[str, Any] = {}
        try:
            while True:
                data = await websocket.receive_text()
                try:
                    message_data = json.loads(data)
                except json.JSONDecodeError:
                    await self._send_error_response(websocket, "unknown", "Message must be valid JSON")
                    continue
                if not isinstance(message_data, dict):
                    await self._send_error_response(websocket, "unknown", "Message must be a JSON object")
                    message_data = {}
                    continue

                action = message_data.get("action")
                if action == "chat":
                    await self._handle_chat_message(websocket, message_data)
                elif action == "approval_response":
                    await self._handle_approval_response(websocket, message_data)
                elif action == "clear_session":
                    await self._handle_clear_session(websocket, message_data)
                else:
                    logger.warning(f"Unknown message format: {message_data}")
                    await self._send_error_response(
                        websocket,
                        message_data.get("request_id", "unknown"),
                        (
                            "Unknown message format. "
                            "Expected 'action': 'chat', 'approval_response' or 'clear_session'"
                        ),
                    )

        except WebSocketDisconnect:
            logger.info("WebSocket disconnected")
        except Exception as e:
            logger.error(f"WebSocket error: {e}")
            with contextlib.suppress(Exception):
                await self._send_error_response(
                    websocket,
                    message_data.get("request_id", "unknown"),
                    f"Server error: {e!s}",
                )
        finally:
            session = self.sessions.get(websocket)
            if session is not None:
                await session.cancel_run()
            self._disconnect_websocket(websocket)

    async def _handle_chat_message(self, websocket: WebSocket, message_data: dict[str, Any]):
        """Append the user's text to the session and run the assistant."""
        request_id = message_data.get("request_id") or str(uuid.uuid4())
        try:
            payload = ChatPayload.model_validate(message_data.get("payload") or {})
        except ValidationError as e:
            await self._send_error_response(websocket, request_id, f"Invalid message format: {e}")
            return
        try:
            profile = get_profile(payload.profile)
        except KeyError:
            await self._send_error_response(websocket, request_id, f"Unknown profile: {payload.profile}")
            return

        session = self.sessions[websocket]
        if session.busy:
            await self._send_error_response(websocket, request_id, BUSY_MESSAGE)
            return
        session.profile = profile
        session.provider = payload.provider or _provider_for(payload.model_id)
        session.model_id = payload.model_id
        logger.info(f"Received chat message: {payload.text[:50]}...")

        await self._send_response(
            websocket,
            WebSocketResponse(
                request_id=request_id,
                status="processing",
                chunk={"metadata": {"user_message": payload.text}},
            ),
        )
        request = ChatRequest(
            messages=[user_message(payload.text)],
            provider=session.provider,
            model_id=payload.model_id,
        )
        self._start_run(websocket, session, request_id, request)

    async def _handle_approval_response(self, websocket: WebSocket, message_data: dict[str, Any]):
        """Record a human decision and resume the run once no approval is left open."""
        request_id = message_data.get("request_id") or str(uuid.uuid4())
        try:
            payload = ApprovalPayload.model_validate(message_data.get("payload") or {})
        except ValidationError as e:
            await self._send_error_response(websocket, request_id, f"Invalid message format: {e}")
            return

        session = self.sessions[websocket]
        if not session.conversation.resolve_approval(payload.id, payload.approved, payload.reason):
            await self._send_response(
                websocket,
                WebSocketResponse(
                    request_id=request_id,
                    status="completed",
                    chunk={"type": "approval_ignored", "metadata": {"approval_id": payload.id}},
                ),
            )
            return

        still_open = session.conversation.approvals.open_ids()
        if still_open:
            await self._send_response(
                websocket,
                WebSocketResponse(
                    request_id=request_id,
                    status="completed",
                    chunk={"type": "approval_recorded", "metadata": {"open_approvals": still_open}},
                ),
            )
            return

        if session.busy:
            await self._send_error_response(websocket, request_id, BUSY_MESSAGE)
            return
        request = ChatRequest(messages=[], provider=session.provider, model_id=session.model_id)
        self._start_run(websocket, session, request_id, request)

    def _start_run(self, websocket: WebSocket, session: ChatSession, request_id: str, request: ChatRequest):
        """Run in the background so the socket keeps reading while updates stream out."""
        session.task = asyncio.create_task(self._run_session(websocket, session, request_id, request))

    async def _run_session(
        self,
        websocket: WebSocket,
        session: ChatSession,
        request_id: str,
        request: ChatRequest,
    ):
        try:
            await self._stream_session(websocket, session, request_id, request)
        except Exception as e:
            logger.error(f"WebSocket run failed: {e}")
            with contextlib.suppress(Exception):
                await self._send_error_response(websocket, request_id, f"Server error: {e!s}")

    async def _stream_session(
        self,
        websocket: WebSocket,
        session: ChatSession,
        request_id: str,
        request: ChatRequest,
    ):
        try:
            run = self.orchestrator.prepare(request, session.profile, session.conversation)
        except ChatError as e:
            await self._send_error_response(websocket, request_id, e.message)
            return

        async for update in run.stream():
            if isinstance(update, ErrorUpdate):
                await self._send_error_response(websocket, request_id, update.error_text)
                return
            await self._send_response(
                websocket,
                WebSocketResponse(request_id=request_id, status="chunk", chunk=update.to_wire()),
            )

        status = session.conversation.status()
        await self._send_response(
            websocket,
            WebSocketResponse(
                request_id=request_id,
                status="completed",
                chunk={
                    "finish_reason": run.finish_reason,
                    "incident_status": status.model_dump(),
                    "open_approvals": session.conversation.approvals.open_ids(),
                },
            ),
        )

    async def _handle_clear_session(self, websocket: WebSocket, message_data: dict[str, Any]):
        """Handle a clear session request from the frontend."""
        request_id = message_data.get("request_id") or str(uuid.uuid4())
        session = self.sessions[websocket]
        await session.cancel_run()
        session.conversation.reset()
        await self._send_response(
            websocket,
            WebSocketResponse(request_id=request_id, status="completed", chunk={"type": "session_cleared"}),
        )

    async def _send_response(self, websocket: WebSocket, response: WebSocketResponse):
        await websocket.send_text(response.model_dump_json())

    async def _send_error_response(self, websocket: WebSocket, request_id: str, error_message: str):
        """Send error response using Pydantic model."""
        response = WebSocketResponse(request_id=request_id, status="error", chunk={"error": error_message})
        await websocket.send_text(response.model_dump_json())

    async def _connect_websocket(self, websocket: WebSocket):
        logger.info(f"WebSocket connection attempt from {websocket.client}")
        await websocket.accept()
        self.sessions[websocket] = ChatSession()
        logger.info(f"WebSocket connection established. Total connections: {len(self.sessions)}")

    def _disconnect_websocket(self, websocket: WebSocket):
        self.sessions.pop(websocket, None)
        logger.info(f"WebSocket connection closed. Total connections: {len(self.sessions)}")

    async def start_server(self):
        """Serve the app with uvicorn until it is stopped."""
        server_config = self.configuration.get_server_config()
        host = server_config.get("host", "localhost")
        port = server_config.get("port", 8000)

        logger.info(f"Starting chat server on {host}:{port}")

        config = uvicorn.Config(self.app, host=host, port=port, log_level="info")
        server = uvicorn.Server(config)

        try:
            await server.serve()
        except Exception as e:
            logger.error(f"Chat server error: {e}")
            raise
        finally:
            for session in self.sessions.values():
                session.conversation.reset()
            self.sessions.clear()
            logger.info("Chat server stopped")


def _provider_for(model_id: str) -> str:
    model = get_model_by_id(model_id)
    return model.provider if model else DEFAULT_MODEL.provider


def create_app(orchestrator: ChatOrchestrator, configuration: Configuration) -> FastAPI:
    return ChatServer(orchestrator, configuration).app


async def run_http_server(orchestrator: ChatOrchestrator, configuration: Configuration) -> None:
    server = ChatServer(orchestrator, configuration)
    await server.start_server()
