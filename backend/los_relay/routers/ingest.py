import json

from fastapi import APIRouter, Depends, HTTPException, Request

from ..pipeline import IngestPipeline
from ..schemas import IngestIn, IngestOut

router = APIRouter(tags=["ingest"])


def get_pipeline(request: Request) -> IngestPipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="ingest pipeline not ready")
    return pipeline


@router.post("/ingest", response_model=IngestOut)
async def ingest(data: IngestIn, pipeline: IngestPipeline = Depends(get_pipeline)):
    """Push one payload through the same path MQTT messages take."""

    raw = data.payload if isinstance(data.payload, str) else json.dumps(data.payload)
    result = await pipeline.handle_message(data.topic, raw)

    return IngestOut(
        accepted=result.accepted,
        reason=result.reason,
        id=result.reading_id,
        alerted=result.alerted,
        reading=result.reading.as_dict() if result.reading else None,
    )
