"""HTTP surface of the key-value gateway."""

from __future__ import annotations

import time
from typing import Optional

import structlog
from fastapi import Body, Depends, FastAPI, Header, Request, Response, status
from fastapi.responses import JSONResponse, PlainTextResponse

from ..common.errors import KVError, NotFoundError, ProvisioningError
from ..common.http_security import require_admin_access, require_metrics_access
from ..common.metrics import GLOBAL_REGISTRY, Histogram
from ..common.observability import (
    configure_logging,
    configure_tracing,
    instrument_fastapi_app,
    loggable_path,
)
from ..common.schemas import ApiError, ProvisionRequest, Tenant
from ..common.settings import GatewaySettings
from ..storage import ObjectStore, build_store
from ..tenants import InMemoryTenantRepository, SqlTenantRepository, TenantRegistry, TenantRepository
from .auth import require_tenant
from .request_metrics import RequestMetricsHook
from .service import KVGateway, KVResponse

SERVICE_NAME = "keyvalue.gateway"

HTTP_LATENCY_HISTOGRAM = GLOBAL_REGISTRY.register(
    Histogram(
        "keyvalue_http_request_latency_seconds",
        buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0],
        description="Gateway HTTP request latency",
    )
)


class GatewayState:
    def __init__(
        self,
        settings: GatewaySettings,
        store: ObjectStore,
        repository: TenantRepository,
        metrics: RequestMetricsHook,
    ):
        self.settings = settings
        self.store = store
        self.registry = TenantRegistry(
            repository,
            store,
            default_region=settings.aws_region,
            default_zone_id=settings.zone_id,
            bucket_prefix=settings.bucket_prefix,
        )
        self.metrics = metrics
        self.gateway = KVGateway(
            store,
            metrics,
            max_key_length=settings.max_key_length,
            max_object_size=settings.max_object_size,
            request_timeout_seconds=settings.request_timeout_seconds,
        )
        self.logger = structlog.get_logger(SERVICE_NAME).bind(backend=store.name)


def build_repository(settings: GatewaySettings) -> TenantRepository:
    if settings.tenant_database_url:
        return SqlTenantRepository(settings.tenant_database_url)
    return InMemoryTenantRepository()


def get_state(request: Request) -> GatewayState:
    return request.app.state.gateway_state  # type: ignore[attr-defined]


def require_admin(request: Request, state: GatewayState = Depends(get_state)) -> None:
    token = state.settings.admin_token.get_secret_value() if state.settings.admin_token else None
    require_admin_access(request, token)


def _parse_length(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _render(result: KVResponse, *, include_body: bool = True) -> Response:
    if result.payload is not None:
        return JSONResponse(result.payload, status_code=result.status_code, headers=result.headers)
    response = Response(
        content=result.body if include_body and result.body is not None else b"",
        status_code=result.status_code,
    )
    # Set after construction so HEAD keeps the object's Content-Length.
    for name, value in result.headers.items():
        response.headers[name] = value
    return response


def create_app(
    settings: Optional[GatewaySettings] = None,
    *,
    store: Optional[ObjectStore] = None,
    repository: Optional[TenantRepository] = None,
) -> FastAPI:
    settings = settings or GatewaySettings()
    settings.validate_for_production()
    configure_logging(SERVICE_NAME, settings.log_level)
    configure_tracing(
        service_name=SERVICE_NAME,
        endpoint=settings.otel_exporter_endpoint,
        headers=settings.otel_exporter_headers,
        sampler_ratio=settings.otel_sampler_ratio,
    )
    state = GatewayState(
        settings,
        store or build_store(settings),
        repository or build_repository(settings),
        RequestMetricsHook(),
    )
    app = FastAPI(title="keyvalue")
    instrument_fastapi_app(app)
    app.state.gateway_state = state

    @app.exception_handler(KVError)
    async def kv_error_handler(request: Request, exc: KVError) -> Response:
        if request.method == "HEAD":
            return Response(status_code=exc.status_code)
        return JSONResponse(exc.to_api_error().model_dump(), status_code=exc.status_code)

    @app.middleware("http")
    async def record_latency(request: Request, call_next):  # noqa: ANN001 - FastAPI middleware signature
        start = time.perf_counter()
        gateway_state = request.app.state.gateway_state  # type: ignore[attr-defined]
        path = loggable_path(request.url.path)
        try:
            response = await call_next(request)
        except Exception:
            duration = time.perf_counter() - start
            HTTP_LATENCY_HISTOGRAM.observe(duration)
            gateway_state.logger.exception(
                "http_request_error",
                method=request.method,
                path=path,
                duration_ms=round(duration * 1000, 2),
            )
            raise

        duration = time.perf_counter() - start
        HTTP_LATENCY_HISTOGRAM.observe(duration)
        log_kwargs = {
            "method": request.method,
            "path": path,
            "status": response.status_code,
            "duration_ms": round(duration * 1000, 2),
        }
        if response.status_code >= 500:
            gateway_state.logger.error("http_request", **log_kwargs)
        elif duration >= 1.0:
            gateway_state.logger.warning("http_request", **log_kwargs)
        else:
            gateway_state.logger.info("http_request", **log_kwargs)
        return response

    @app.head("/v1/kv/{key:path}")
    async def head_value(
        key: str,
        state: GatewayState = Depends(get_state),
        tenant: Tenant = Depends(require_tenant),
    ) -> Response:
        result = await state.gateway.head(tenant, key)
        return _render(result, include_body=False)

    @app.get("/v1/kv/{key:path}")
    async def get_value(
        key: str,
        state: GatewayState = Depends(get_state),
        tenant: Tenant = Depends(require_tenant),
    ) -> Response:
        result = await state.gateway.get(tenant, key)
        return _render(result)

    @app.put("/v1/kv/{key:path}")
    async def put_value(
        key: str,
        request: Request,
        content_type: str | None = Header(default=None, alias="Content-Type"),
        if_match: str | None = Header(default=None, alias="If-Match"),
        if_none_match: str | None = Header(default=None, alias="If-None-Match"),
        state: GatewayState = Depends(get_state),
        tenant: Tenant = Depends(require_tenant),
    ) -> Response:
        result = await state.gateway.put(
            tenant,
            key,
            request.stream(),
            content_type,
            if_match=if_match,
            if_none_match=if_none_match,
            declared_length=_parse_length(request.headers.get("content-length")),
        )
        return _render(result)

    @app.delete("/v1/kv/{key:path}")
    async def delete_value(
        key: str,
        state: GatewayState = Depends(get_state),
        tenant: Tenant = Depends(require_tenant),
    ) -> Response:
        result = await state.gateway.delete(tenant, key)
        return _render(result)

    @app.post("/v1/tenants", status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_admin)])
    async def provision_tenant(
        payload: Optional[ProvisionRequest] = Body(default=None),
        state: GatewayState = Depends(get_state),
    ) -> JSONResponse:
        payload = payload or ProvisionRequest()
        try:
            result = await state.registry.provision(payload.region, payload.zone_id)
        except ProvisioningError:
            error = ApiError(error="Tenant provisioning failed", code="PROVISIONING_FAILED", status=503)
            return JSONResponse(error.model_dump(), status_code=error.status)
        return JSONResponse(result.model_dump(mode="json"), status_code=status.HTTP_201_CREATED)

    @app.get("/v1/tenants/{tenant_id}", dependencies=[Depends(require_admin)])
    def get_tenant(tenant_id: str, state: GatewayState = Depends(get_state)) -> JSONResponse:
        tenant = state.registry.lookup_by_id(tenant_id)
        if tenant is None:
            raise NotFoundError("Tenant not found")
        return JSONResponse(tenant.model_dump(mode="json"))

    @app.post("/v1/tenants/{tenant_id}/suspend", dependencies=[Depends(require_admin)])
    def suspend_tenant(tenant_id: str, state: GatewayState = Depends(get_state)) -> dict:
        if not state.registry.suspend(tenant_id):
            raise NotFoundError("Tenant not found")
        return {"success": True}

    @app.post("/v1/tenants/{tenant_id}/reactivate", dependencies=[Depends(require_admin)])
    def reactivate_tenant(tenant_id: str, state: GatewayState = Depends(get_state)) -> dict:
        if not state.registry.reactivate(tenant_id):
            raise NotFoundError("Tenant not found")
        return {"success": True}

    @app.post("/v1/tenants/{tenant_id}/tokens", dependencies=[Depends(require_admin)])
    def issue_tenant_token(tenant_id: str, state: GatewayState = Depends(get_state)) -> JSONResponse:
        token = state.registry.issue_token(tenant_id)
        if token is None:
            raise NotFoundError("Tenant not found")
        return JSONResponse(token.model_dump(mode="json"), status_code=status.HTTP_201_CREATED)

    @app.post("/v1/tokens/revoke", dependencies=[Depends(require_admin)])
    def revoke_tenant_token(
        token: str = Body(..., embed=True),
        state: GatewayState = Depends(get_state),
    ) -> Response:
        if not state.registry.revoke_token(token):
            raise NotFoundError("Token not found")
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.get("/status")
    def status_probe(state: GatewayState = Depends(get_state)) -> JSONResponse:
        payload = state.store.status()
        payload.update(
            {
                "tenants": len(state.registry.repository.list_tenants()),
                "max_key_length": state.settings.max_key_length,
                "max_object_size": state.settings.max_object_size,
            }
        )
        return JSONResponse(payload)

    @app.get("/metrics", response_class=PlainTextResponse)
    async def metrics_endpoint(request: Request, state: GatewayState = Depends(get_state)) -> PlainTextResponse:
        token = state.settings.metrics_token.get_secret_value() if state.settings.metrics_token else None
        require_metrics_access(request, token)
        return PlainTextResponse(GLOBAL_REGISTRY.render())

    @app.get("/healthz", status_code=status.HTTP_200_OK)
    async def health_check(state: GatewayState = Depends(get_state)) -> JSONResponse:
        """Health check for K8s readiness/liveness probes."""
        health: dict = {"status": "healthy", "checks": {}}
        try:
            backend_status = state.store.status()
            health["checks"]["backend"] = backend_status.get("backend", "unknown")
            health["checks"]["writable"] = backend_status.get("writable", False)
        except Exception as exc:  # noqa: BLE001 - reported in the probe body
            health["checks"]["backend"] = f"error: {type(exc).__name__}"
            health["status"] = "unhealthy"
        if not health["checks"].get("writable"):
            health["status"] = "unhealthy"
        code = status.HTTP_200_OK if health["status"] == "healthy" else status.HTTP_503_SERVICE_UNAVAILABLE
        return JSONResponse(health, status_code=code)

    return app
