from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from tbm_safety.api.schemas import ApprovalOut, ErrorOut
from tbm_safety.core.errors import ApprovalError


async def approval_error_handler(request: Request, exc: ApprovalError) -> JSONResponse:
    body = ErrorOut(
        code=exc.code,
        message=exc.message,
        approval=ApprovalOut.from_entity(exc.approval) if exc.approval is not None else None,
    )
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(mode="json"))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApprovalError, approval_error_handler)
