from __future__ import annotations

from fastapi import FastAPI, HTTPException

from portal.api.routers import access, identity, knowledge, org
from portal.infra.audit import AuditMiddleware
from portal.infra.db import check_db_ready
from portal.infra.logging_config import configure_logging
from portal.infra.redis_state import check_redis_ready

configure_logging()

app = FastAPI(
    title="portal-access",
    description="Knowledge-base access control and branch/department selection for the company portal.",
    version="0.1.0",
)

app.add_middleware(AuditMiddleware)

app.include_router(identity.router, prefix="/api/identity", tags=["identity"])
app.include_router(org.router, prefix="/api/org", tags=["org"])
app.include_router(access.router, prefix="/api/access", tags=["access"])
app.include_router(knowledge.router, prefix="/api/knowledge", tags=["knowledge"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    redis_ok = check_redis_ready()
    checks = {
        "db": "ok" if db_ok else "fail",
        "redis": "ok" if redis_ok else "fail",
    }
    if not (db_ok and redis_ok):
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
