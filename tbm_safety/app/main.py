"""FastAPI service for the monthly TBM report approval workflow.

- Team leaders request approval of a team's monthly report
- The team's approver signs and approves, or rejects with a reason
- Both parties are notified by email after each step (best effort)

Caller identity arrives in the ``X-User-Id`` header, set by the
authenticating gateway in front of this service.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from tbm_safety.api.errors import register_error_handlers
from tbm_safety.api.routes import register_routes
from tbm_safety.db.connection import init_db

tags_metadata = [
    {
        "name": "Approvals",
        "description": "Request, approve and reject monthly TBM reports"
    },
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


def create_app(*, create_tables: bool = True) -> FastAPI:
    app = FastAPI(
        title="TBM Safety Approvals",
        version="1.0.0",
        description="Monthly TBM report approval workflow",
        openapi_tags=tags_metadata,
        lifespan=lifespan if create_tables else None,
    )
    register_error_handlers(app)
    # Register all API routes
    register_routes(app)
    return app


app = create_app()
