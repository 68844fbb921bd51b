"""
FastAPI surface of the toolkit.

'create_app' wires a 'ResearchToolkitController' and an 'AuthProvider' into an
application exposing:

    POST   /chat             - run one turn, streamed as Server-Sent Events.
    GET    /chats            - the caller's conversations, newest first.
    GET    /chats/{chat_id}  - one conversation with its messages.
    DELETE /chats/{chat_id}  - delete one conversation.

Request errors raised by the controller before streaming starts are mapped to
status codes by the exception handlers registered here. Once the stream is
open, failures travel as a terminal 'error' event instead.
"""

from collections.abc import Callable
from contextlib import AbstractAsyncContextManager

from fastapi import APIRouter, Depends, FastAPI, Query, Request, status
from fastapi.responses import JSONResponse, Response, StreamingResponse

from research_toolkit.api.auth.base import AuthProvider
from research_toolkit.conversation_database.controller import ChatRequest, ResearchToolkitController
from research_toolkit.conversation_database.data_models.conversation import DEFAULT_LIST_LIMIT, Conversation
from research_toolkit.errors import EmptyMessagesError, NotFoundOrUnauthorized, Unauthorized
from research_toolkit.streaming.encoder import SSE_MEDIA_TYPE, sse_stream

_ERROR_RESPONSES: dict[type[Exception], tuple[int, str]] = {
    Unauthorized: (status.HTTP_401_UNAUTHORIZED, "Unauthorized"),
    EmptyMessagesError: (status.HTTP_400_BAD_REQUEST, "No messages provided"),
    NotFoundOrUnauthorized: (status.HTTP_404_NOT_FOUND, "Chat not found or unauthorized"),
}


def register_error_handlers(app: FastAPI) -> None:
    async def handle(request: Request, exc: Exception) -> JSONResponse:
        status_code, detail = _ERROR_RESPONSES[type(exc)]
        return JSONResponse(status_code=status_code, content={"detail": detail})

    for error_type in _ERROR_RESPONSES:
        app.add_exception_handler(error_type, handle)


def create_chat_router(controller: ResearchToolkitController, auth_provider: AuthProvider) -> APIRouter:
    router = APIRouter()
    current_user = Depends(auth_provider.get_current_user_id)

    @router.post("/chat")
    async def chat(body: ChatRequest, user_id: str = current_user) -> StreamingResponse:
        turn = await controller.prepare_turn(body, user_id)
        return StreamingResponse(
            sse_stream(controller.stream_turn(turn)),
            media_type=SSE_MEDIA_TYPE,
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    @router.get("/chats")
    async def list_chats(
        limit: int = Query(default=DEFAULT_LIST_LIMIT, ge=1, le=200), user_id: str = current_user
    ) -> list[Conversation]:
        return await controller.list_conversations(user_id, limit)

    @router.get("/chats/{chat_id}")
    async def get_chat(chat_id: str, user_id: str = current_user) -> Conversation:
        return await controller.get_conversation(user_id, chat_id)

    @router.delete("/chats/{chat_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_chat(chat_id: str, user_id: str = current_user) -> Response:
        await controller.delete_conversation(user_id, chat_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    return router


def create_app(
    controller: ResearchToolkitController,
    auth_provider: AuthProvider,
    lifespan: Callable[[FastAPI], AbstractAsyncContextManager[None]] | None = None,
) -> FastAPI:
    app = FastAPI(title="Deep Search", lifespan=lifespan)
    register_error_handlers(app)
    auth_provider.bind_to_app(app)
    app.include_router(create_chat_router(controller, auth_provider))
    return app
