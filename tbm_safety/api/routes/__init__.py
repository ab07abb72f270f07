from fastapi import FastAPI

from .approvals import router as approvals_router, monthly_router


def register_routes(app: FastAPI):
    app.include_router(approvals_router, prefix="/v1")
    app.include_router(monthly_router, prefix="/v1")
