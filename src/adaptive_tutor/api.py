"""FastAPI application exposing tutoring sessions and recommendations as a REST API."""

from __future__ import annotations

import asyncio
import logging
import os
from functools import lru_cache
from typing import Dict, List, Literal, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from adaptive_tutor.data_models import Recommendation, RecommendationStatus
from adaptive_tutor.errors import (
    InteractionNotFound,
    InvalidLearnerId,
    InvalidTransition,
    RecommendationNotFound,
    SessionNotFound,
    TutoringError,
)
from adaptive_tutor.system import TutoringSystem
from adaptive_tutor.tutoring import TurnResult

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def _get_system() -> TutoringSystem:
    """Create a singleton TutoringSystem instance."""
    logger.info("Initializing TutoringSystem for FastAPI service")
    return TutoringSystem.from_config(os.getenv("ADAPTIVE_TUTOR_CONFIG"))


async def get_system() -> TutoringSystem:
    """FastAPI dependency that returns the shared TutoringSystem."""
    return _get_system()


def _http_error(exc: Exception) -> HTTPException:
    """Translate engine errors into HTTP status codes."""
    if isinstance(exc, (InvalidLearnerId, SessionNotFound, InteractionNotFound, RecommendationNotFound)):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, InvalidTransition):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, ValueError):
        return HTTPException(status_code=422, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


class StartSessionRequest(BaseModel):
    learner_id: str = Field(..., description="Learner identifier")
    concept_id: Optional[str] = Field(default=None, description="Concept hint from the launching lesson")
    subject: Optional[str] = None
    device_type: str = "web"


class ResponseRequest(BaseModel):
    interaction_id: str
    response_text: str
    latency_ms: Optional[int] = Field(default=None, ge=0)


class ScoreRequest(BaseModel):
    success_indicator: float = Field(..., ge=0, le=1)


class FeedbackRequest(BaseModel):
    status: Literal["accepted", "dismissed"]


class ScoreResponse(BaseModel):
    interaction_id: str
    turn: Optional[TurnResult] = None


app = FastAPI(
    title="Adaptive Tutor API",
    description="REST API for adaptive tutoring sessions and learning recommendations",
    version="0.1.0",
)

allow_origins = os.getenv("API_ALLOW_ORIGINS", "*")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in allow_origins.split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", summary="Health check")
async def health() -> Dict[str, str]:
    """Return service health information."""
    return {"status": "ok"}


@app.post("/sessions", response_model=TurnResult, summary="Start a tutoring session")
async def start_session(
    payload: StartSessionRequest,
    system: TutoringSystem = Depends(get_system),
) -> TurnResult:
    """Open a session and return its first guiding question."""
    try:
        return system.sessions.start_session(
            payload.learner_id,
            concept_hint=payload.concept_id,
            subject=payload.subject,
            device_type=payload.device_type,
        )
    except (TutoringError, ValueError) as exc:
        raise _http_error(exc) from exc


@app.post(
    "/sessions/{session_id}/responses",
    response_model=TurnResult,
    summary="Answer the open question of a session",
)
async def submit_response(
    session_id: str,
    payload: ResponseRequest,
    system: TutoringSystem = Depends(get_system),
) -> TurnResult:
    try:
        return await system.sessions.submit_response(
            session_id, payload.interaction_id, payload.response_text, payload.latency_ms
        )
    except (TutoringError, ValueError) as exc:
        raise _http_error(exc) from exc


@app.post("/sessions/{session_id}/poll", response_model=TurnResult, summary="Resume a waiting session")
async def poll_session(session_id: str, system: TutoringSystem = Depends(get_system)) -> TurnResult:
    try:
        return await system.sessions.poll(session_id)
    except (TutoringError, ValueError) as exc:
        raise _http_error(exc) from exc


@app.post("/sessions/{session_id}/end", response_model=TurnResult, summary="End a session")
async def end_session(session_id: str, system: TutoringSystem = Depends(get_system)) -> TurnResult:
    try:
        return await system.sessions.end_session(session_id)
    except (TutoringError, ValueError) as exc:
        raise _http_error(exc) from exc


@app.post(
    "/interactions/{interaction_id}/score",
    response_model=ScoreResponse,
    summary="Deliver an externally computed score",
)
async def deliver_score(
    interaction_id: str,
    payload: ScoreRequest,
    system: TutoringSystem = Depends(get_system),
) -> ScoreResponse:
    try:
        turn = await system.sessions.deliver_score(interaction_id, payload.success_indicator)
    except (TutoringError, ValueError) as exc:
        raise _http_error(exc) from exc
    return ScoreResponse(interaction_id=interaction_id, turn=turn)


@app.get(
    "/learners/{learner_id}/recommendations",
    response_model=List[Recommendation],
    summary="List a learner's recommendations",
)
async def list_recommendations(
    learner_id: str,
    status: Optional[RecommendationStatus] = None,
    system: TutoringSystem = Depends(get_system),
) -> List[Recommendation]:
    try:
        return await asyncio.to_thread(system.recommendations.get_recommendations, learner_id, status)
    except (TutoringError, ValueError) as exc:
        raise _http_error(exc) from exc


@app.post(
    "/learners/{learner_id}/recommendations/generate",
    response_model=List[Recommendation],
    summary="Generate recommendations on demand",
)
async def generate_recommendations(
    learner_id: str,
    system: TutoringSystem = Depends(get_system),
) -> List[Recommendation]:
    try:
        return await asyncio.to_thread(system.recommendations.generate_for, learner_id)
    except (TutoringError, ValueError) as exc:
        raise _http_error(exc) from exc


@app.post(
    "/recommendations/{recommendation_id}/feedback",
    response_model=Recommendation,
    summary="Accept or dismiss a recommendation",
)
async def recommendation_feedback(
    recommendation_id: str,
    payload: FeedbackRequest,
    system: TutoringSystem = Depends(get_system),
) -> Recommendation:
    try:
        return await asyncio.to_thread(
            system.recommendations.record_feedback,
            recommendation_id,
            RecommendationStatus(payload.status),
        )
    except (TutoringError, ValueError) as exc:
        raise _http_error(exc) from exc
