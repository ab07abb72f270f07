"""FastAPI stand-in for the internal mail service.

The approval service never talks SMTP itself; it posts rendered messages to
this service, which in production would relay them to the company mail
server.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, FastAPI
from pydantic import BaseModel, EmailStr, Field

router = APIRouter(prefix="/notifications", tags=["Notifications"])


class SendEmailIn(BaseModel):
    to: EmailStr
    subject: str = Field(min_length=1)
    body: str = Field(min_length=1)
    from_address: str = Field(default="Safety Team <noreply@example.com>")


class SendEmailOut(BaseModel):
    ok: bool
    provider_message_id: str


@router.post("/send-email", response_model=SendEmailOut)
async def send_email(payload: SendEmailIn) -> SendEmailOut:
    # In production, this might call an SMTP relay or a provider API.
    return SendEmailOut(ok=True, provider_message_id=f"msg_{uuid.uuid4()}")


app = FastAPI(title="Internal Mail Service", version="1.0.0")
app.include_router(router, prefix="/v1")
