"""
Messages API Endpoint.

Receives inbound messages from any channel adapter and runs one
conversation turn. The reply is delivered through the configured sender
and also returned in the response body.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from booking_bot.core.conversation.factory import get_orchestrator
from booking_bot.core.conversation.inbound import JsonInboundNormalizer
from booking_bot.core.conversation.orchestrator import ConversationOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["Messages"])

_normalizer = JsonInboundNormalizer()


class MessageRequest(BaseModel):
    """Inbound message."""

    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(
        ...,
        alias="from",
        description="Sender contact address",
        examples=["whatsapp:+5491122334455"],
    )
    to: str = Field(
        ...,
        description="Address the bot answers on (identifies the professional)",
        examples=["+5491166778899"],
    )
    type: str = Field(
        default="text",
        description="Content type; anything but 'text' is ignored",
    )
    text: Optional[str] = Field(
        default=None,
        max_length=2000,
        description="Message body",
        examples=["Quiero un turno el martes 14:30"],
    )
    timestamp: Optional[datetime] = None
    name: Optional[str] = Field(
        default=None,
        description="Sender display name, if the channel provides one",
    )


class MessageResponse(BaseModel):
    """Result of one conversation turn."""

    reply: Optional[str] = Field(
        default=None,
        description="Reply sent to the sender (null when the message was ignored)",
    )
    state: Optional[str] = Field(
        default=None,
        description="Conversation state after the turn",
    )
    appointment_id: Optional[str] = None
    delivered: bool = False
    error: Optional[str] = None


@router.post(
    "",
    response_model=MessageResponse,
    status_code=status.HTTP_200_OK,
    summary="Handle an inbound message",
    description="Run one booking conversation turn for an inbound message.",
)
async def handle_message(
    request: MessageRequest,
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
) -> MessageResponse:
    """Normalize the message and hand it to the orchestrator."""
    message = _normalizer.normalize(request.model_dump(by_alias=True))
    if message is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Sender and recipient must contain a contact number",
        )

    result = await orchestrator.handle(message)

    return MessageResponse(
        reply=result.reply,
        state=result.state.value if result.state else None,
        appointment_id=str(result.appointment_id) if result.appointment_id else None,
        delivered=result.delivered,
        error=result.error,
    )
