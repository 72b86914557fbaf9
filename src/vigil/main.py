# src/vigil/main.py
import asyncio
from contextlib import asynccontextmanager
import logging
from fastapi import FastAPI
from vigil.api import endpoints
from vigil.config.settings import Settings, settings
from vigil.core.audit import AuditEngine, MappingConfigStore
from vigil.core.services import SecurityMonitor
from vigil.services.maintenance import run_maintenance
from vigil.services.telemetry import ElasticsearchSink, TelemetryDispatcher, WebhookSink
from elasticsearch import AsyncElasticsearch

def build_elasticsearch_client(config: Settings) -> AsyncElasticsearch:
    es_kwargs = {
        "hosts": [config.ELASTICSEARCH_URL],
    }
    # Optional basic auth
    if config.ELASTICSEARCH_USERNAME and config.ELASTICSEARCH_PASSWORD:
        es_kwargs["basic_auth"] = (
            config.ELASTICSEARCH_USERNAME,
            config.ELASTICSEARCH_PASSWORD,
        )
    # Optional TLS verification
    if config.ELASTICSEARCH_CA_CERTS:
        es_kwargs["ca_certs"] = config.ELASTICSEARCH_CA_CERTS
    es_kwargs["verify_certs"] = config.ELASTICSEARCH_VERIFY_CERTS
    return AsyncElasticsearch(**es_kwargs)

def build_sink(config: Settings):
    """Elasticsearch wins over the webhook; no sink means local logging only."""
    if config.ELASTICSEARCH_URL:
        return ElasticsearchSink(build_elasticsearch_client(config), config.SECURITY_EVENTS_INDEX)
    if config.TELEMETRY_WEBHOOK_URL:
        return WebhookSink(config.TELEMETRY_WEBHOOK_URL, timeout=config.TELEMETRY_TIMEOUT_SECONDS)
    return None

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manages the application's startup and shutdown events.
    Builds the telemetry dispatcher, the security monitor and the maintenance task.
    """
    logging.basicConfig(level=settings.LOG_LEVEL.upper())
    logging.info("Application startup: Initializing security monitor (%s mode).", settings.ENVIRONMENT)

    sink = build_sink(settings)
    dispatcher = None
    if sink is not None:
        dispatcher = TelemetryDispatcher(
            sink,
            max_queue_size=settings.TELEMETRY_QUEUE_SIZE,
            send_timeout=settings.TELEMETRY_TIMEOUT_SECONDS,
        )
        await dispatcher.start()
    elif settings.is_production:
        logging.warning("No telemetry sink configured; severe events will not leave the process.")

    app.state.dispatcher = dispatcher
    app.state.monitor = SecurityMonitor(settings, dispatcher=dispatcher)
    app.state.audit_engine = AuditEngine(
        MappingConfigStore(settings.model_dump()),
        is_production=settings.is_production,
    )

    maintenance_task = None
    if settings.SWEEP_INTERVAL_SECONDS > 0:
        maintenance_task = asyncio.create_task(
            run_maintenance(app.state.monitor, settings.SWEEP_INTERVAL_SECONDS)
        )

    # Yield control back to the server, allowing the app to run
    yield

    # --- Shutdown ---
    logging.info("Application shutdown: Cleaning up resources.")
    if maintenance_task is not None:
        maintenance_task.cancel()
        try:
            await maintenance_task
        except asyncio.CancelledError:
            logging.info("Maintenance task cancelled.")

    if dispatcher is not None:
        await dispatcher.stop()

    if isinstance(sink, ElasticsearchSink):
        await sink.client.close()
        logging.info("Elasticsearch client closed.")
    elif isinstance(sink, WebhookSink):
        await sink.aclose()

app = FastAPI(
    title='Vigil API',
    description='Runtime security-event monitoring, IP quarantine and posture audit.',
    version='1.0.0',
    lifespan=lifespan
)

app.include_router(endpoints.router, prefix='/api/v1')

# Add a root endpoint for simple "hello world"
@app.get("/", tags=["Root"])
def read_root():
    return {"message": "Welcome to the Vigil API. Visit /docs for API documentation."}
