import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .alerting import CooldownStore, EmailNotifier, ThresholdEvaluator
from .db import AsyncSessionLocal, engine
from .logging_config import configure_logging
from .pipeline import IngestPipeline
from .ppm import PolicyTable
from .routers import ingest, live, readings, thresholds
from .settings import Settings, get_settings
from .storage import ReadingStore
from .subscriber import MqttSubscriber
from .topics import TopicSerialMap
from .ws import broadcaster

logger = logging.getLogger(__name__)


def build_pipeline(settings: Settings) -> IngestPipeline:
    store = ReadingStore(AsyncSessionLocal, default_threshold=settings.default_ppm_threshold)
    evaluator = ThresholdEvaluator(
        store.get_threshold,
        EmailNotifier(),
        cooldown=CooldownStore(),
        cooldown_seconds=settings.alert_cooldown_seconds,
    )
    return IngestPipeline(
        store=store,
        emitter=broadcaster,
        evaluator=evaluator,
        serial_resolver=TopicSerialMap(settings.topic_serials),
        policies=PolicyTable.integer_only(settings.integer_only_serials),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)

    pipeline = build_pipeline(settings)
    app.state.pipeline = pipeline

    subscriber = None
    if settings.mqtt_enabled:
        subscriber = MqttSubscriber(
            pipeline,
            asyncio.get_running_loop(),
            settings.mqtt_url,
            settings.mqtt_topics,
            client_id=settings.mqtt_client_id,
            username=settings.mqtt_username,
            password=settings.mqtt_password,
        )
        subscriber.connect()
    else:
        logger.info("MQTT input disabled; only POST /ingest feeds the pipeline")

    try:
        yield
    finally:
        if subscriber is not None:
            subscriber.stop()
        await engine.dispose()


app = FastAPI(title="LoS relay", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(get_settings().cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(readings.router)
app.include_router(ingest.router)
app.include_router(thresholds.router)
app.include_router(live.router)


@app.get("/health")
def health():
    return {"ok": True}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("los_relay.main:app", host="0.0.0.0", port=8000, reload=True)
