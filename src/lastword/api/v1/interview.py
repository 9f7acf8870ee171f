"""Exit-interview streaming endpoint.

POST /api/v1/exit-interview with ``x-api-key`` and
``{messages, userContext?, insightId?}``. Answers with Server-Sent Events in
the canonical delta framing, terminated by ``data: [DONE]``. The
``X-Insight-Id`` header carries the created or echoed insight id so the
widget can send it back on later turns.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from src.lastword.api.deps import get_account_id, get_interview_service
from src.lastword.interview.protocol import SSE_MEDIA_TYPE
from src.lastword.interview.schemas import ExitInterviewRequest
from src.lastword.interview.service import InterviewService

router = APIRouter(prefix="/api/v1", tags=["interview"])

INSIGHT_ID_HEADER = "X-Insight-Id"


@router.post("/exit-interview")
async def exit_interview(
    body: ExitInterviewRequest,
    account_id: str = Depends(get_account_id),
    service: InterviewService = Depends(get_interview_service),
):
    """Run one interview turn.

    Provider failures raise before any byte is streamed and are mapped to
    429/402/502 by the app's exception handlers.
    """
    result = await service.run_turn(account_id, body)

    headers = {
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",
    }
    if result.insight_id:
        headers[INSIGHT_ID_HEADER] = result.insight_id

    return StreamingResponse(result.events, media_type=SSE_MEDIA_TYPE, headers=headers)
