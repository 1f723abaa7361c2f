"""
HTTP surface for the telephony layer.

One endpoint per caller utterance:
    POST /api/v1/turn   {utterance_text, client_state?, call_id?}
    GET  /health

The telephony layer must pass back ``client_state`` from the previous
response on every turn; a missing or unreadable state starts a new
conversation.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from receptionist.config import settings
from receptionist.conversation.orchestrator import TurnInputError, TurnOrchestrator
from receptionist.prompts.prompt_templates import GENERIC_FAILURE_REPLY
from receptionist.schemas.conversation_schema import TurnRequest, TurnResponse
from receptionist.tools.business_context import BusinessNotFoundError

logger = logging.getLogger(__name__)

API_V1_PREFIX = "/api/v1"

router = APIRouter(tags=["conversation"])


def build_orchestrator() -> TurnOrchestrator:
    """Wire the orchestrator to the configured production backends."""
    from receptionist.clients.datastore import SupabaseDatastore
    from receptionist.clients.gateway import HttpNotificationGateway
    from receptionist.clients.llm import OpenAIChatClient

    return TurnOrchestrator(
        datastore=SupabaseDatastore(),
        llm=OpenAIChatClient(),
        gateway=HttpNotificationGateway(),
    )


def get_orchestrator(request: Request) -> TurnOrchestrator:
    return request.app.state.orchestrator


@router.post("/turn", response_model=TurnResponse)
async def handle_turn(
    payload: TurnRequest,
    orchestrator: TurnOrchestrator = Depends(get_orchestrator),
) -> TurnResponse:
    """Process one caller utterance and return the reply plus updated state."""
    return await orchestrator.handle_turn(payload)


async def _turn_input_error(request: Request, exc: TurnInputError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": str(exc)})


async def _business_not_found(request: Request, exc: BusinessNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": str(exc)})


async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error while processing turn: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"error": "internal_error", "reply_text": GENERIC_FAILURE_REPLY},
    )


def create_app(orchestrator: Optional[TurnOrchestrator] = None) -> FastAPI:
    """Build the application; production backends are wired at startup
    unless an orchestrator is supplied."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting %s API...", settings.agent_name)
        app.state.orchestrator = orchestrator or build_orchestrator()
        logger.info("Application startup complete")
        yield
        logger.info("Shutting down %s API...", settings.agent_name)

    app = FastAPI(
        title=settings.agent_name,
        description="Conversational booking orchestrator for AI phone calls",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.include_router(router, prefix=API_V1_PREFIX)
    app.add_exception_handler(TurnInputError, _turn_input_error)
    app.add_exception_handler(BusinessNotFoundError, _business_not_found)
    app.add_exception_handler(Exception, _unexpected_error)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "agent": settings.agent_name}

    return app
