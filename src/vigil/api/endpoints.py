from fastapi import APIRouter, Security, HTTPException, Depends, Request
from pydantic import BaseModel, Field
from typing import Any, Optional
import secrets
from fastapi.security import APIKeyHeader
from vigil.config.settings import settings
from vigil.core.audit import AuditEngine
from vigil.core.models import (
    AuditCheckItem,
    AuditSummary,
    EventType,
    RequestContext,
    SecurityEvent,
    SecurityStats,
)
from vigil.core.services import SecurityMonitor
from vigil.services.telemetry import TelemetryDispatcher

router = APIRouter()
api_key_header = APIKeyHeader(name='X-API-KEY')

class EventIn(BaseModel):
    type: EventType
    details: str = ''
    metadata: Optional[dict[str, Any]] = None
    ip: Optional[str] = Field(None, description="Source IP; defaults to the calling client")
    path: str = '/'
    method: str = 'ANY'
    user_id: Optional[str] = None

class BlacklistStatus(BaseModel):
    ip: str
    blacklisted: bool

def get_monitor(request: Request) -> SecurityMonitor:
    """
    Dependency to get the shared SecurityMonitor from the app state.
    This relies on the monitor being created in the lifespan of the FastAPI app.
    """
    return request.app.state.monitor

def get_audit_engine(request: Request) -> AuditEngine:
    return request.app.state.audit_engine

def get_dispatcher(request: Request) -> Optional[TelemetryDispatcher]:
    return getattr(request.app.state, 'dispatcher', None)

def get_api_key(api_key: str = Security(api_key_header)):
    # Use secrets.compare_digest to prevent timing attacks
    if secrets.compare_digest(api_key, settings.API_KEY):
        return api_key
    else:
        raise HTTPException(
            status_code=403,
            detail='Could not validate credentials',
        )

def client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get('x-forwarded-for')
    if forwarded:
        first = forwarded.split(',')[0].strip()
        if first:
            return first
    real_ip = request.headers.get('x-real-ip')
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else 'unknown'

@router.get('/health', tags=['Monitoring'])
def health_check():
    return {'status': 'ok'}

@router.post('/events', tags=['Events'], status_code=201, response_model=SecurityEvent,
             dependencies=[Security(get_api_key)])
async def log_event(
    body: EventIn,
    request: Request,
    monitor: SecurityMonitor = Depends(get_monitor)
):
    context = RequestContext(
        ip=body.ip or client_ip(request),
        path=body.path,
        method=body.method,
        user_agent=request.headers.get('user-agent'),
        user_id=body.user_id,
    )
    return monitor.log_security_event(body.type, context, body.details, body.metadata)

@router.get('/ips/{ip}/blacklisted', tags=['Events'], response_model=BlacklistStatus,
            dependencies=[Security(get_api_key)])
async def check_blacklist(ip: str, monitor: SecurityMonitor = Depends(get_monitor)):
    return BlacklistStatus(ip=ip, blacklisted=monitor.is_ip_blacklisted(ip))

@router.get('/stats', tags=['Events'], response_model=SecurityStats,
            dependencies=[Security(get_api_key)])
async def get_stats(monitor: SecurityMonitor = Depends(get_monitor)):
    return monitor.get_security_stats()

@router.get('/audit', tags=['Audit'], response_model=list[AuditCheckItem],
            dependencies=[Security(get_api_key)])
async def get_audit(engine: AuditEngine = Depends(get_audit_engine)):
    return engine.perform_security_audit()

@router.get('/audit/summary', tags=['Audit'], response_model=AuditSummary,
            dependencies=[Security(get_api_key)])
async def get_audit_summary(engine: AuditEngine = Depends(get_audit_engine)):
    return engine.get_security_audit_summary()

@router.get('/telemetry', tags=['Monitoring'], dependencies=[Security(get_api_key)])
async def get_telemetry_stats(dispatcher: Optional[TelemetryDispatcher] = Depends(get_dispatcher)):
    if dispatcher is None:
        return {'enabled': False}
    return {'enabled': True, 'running': dispatcher.running, **dispatcher.stats()}
