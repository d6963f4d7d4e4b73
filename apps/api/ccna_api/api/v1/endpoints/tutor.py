from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, StreamingResponse

from ccna_api.schemas.tutor import GenerateRequest, TutorRequest
from ccna_api.services.tutor_service import TutorService, tutor_service

router = APIRouter(prefix="/tutor", tags=["tutor"])

SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}


def get_tutor_service() -> TutorService:
    return tutor_service


@router.post("/explain")
async def explain(payload: TutorRequest, service: TutorService = Depends(get_tutor_service)):
    if payload.stream:
        service.client.ensure_configured()
        return StreamingResponse(
            service.stream_explain(
                payload.concept,
                payload.context,
                max_output_tokens=payload.max_output_tokens,
                temperature=payload.temperature,
            ),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    result, cached = await service.explain(
        payload.concept,
        payload.context,
        max_output_tokens=payload.max_output_tokens,
        temperature=payload.temperature,
    )
    return JSONResponse(content=result.to_wire(), headers={"X-Cache": "hit" if cached else "miss"})


@router.post("/generate")
async def generate(payload: GenerateRequest, service: TutorService = Depends(get_tutor_service)):
    if payload.stream:
        service.client.ensure_configured()
        return StreamingResponse(service.stream_text(payload.prompt), media_type="text/event-stream", headers=SSE_HEADERS)

    text, cached = await service.generate_text(payload.prompt)
    return JSONResponse(content={"text": text}, headers={"X-Cache": "hit" if cached else "miss"})
