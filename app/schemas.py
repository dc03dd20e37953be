"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data validation
- Response models for API responses
"""

from datetime import date
from typing import Optional

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# Pydantic Request Models
# =============================================================================

class InboundSms(BaseModel):
    """
    Form fields of a Twilio inbound SMS webhook that the service relies on.

    Twilio sends many more fields; they are ignored.
    """
    from_number: str = Field(
        ...,
        alias="From",
        min_length=1,
        description="Sender phone number"
    )
    body: str = Field(
        ...,
        alias="Body",
        min_length=1,
        max_length=1600,
        description="Message text"
    )

    @field_validator("from_number")
    @classmethod
    def strip_from_number(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("From must not be blank")
        return v

    @field_validator("body")
    @classmethod
    def reject_blank_body(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Body must not be blank")
        return v

    model_config = {"populate_by_name": True}


# =============================================================================
# Pydantic Response Models
# =============================================================================

class ErrorResponse(BaseModel):
    """Response model for webhook error responses."""
    error: str = Field(..., description="Error description")
    details: Optional[str] = Field(None, description="Additional error details")


class ConversationResponse(BaseModel):
    """A contractor conversation as shown in the admin list."""
    id: str
    phone_number: str
    company_name: Optional[str] = None
    building_id: Optional[str] = None
    unit_number: Optional[str] = None
    roof_end: Optional[str] = None
    state: str
    pin_delivered_at: Optional[str] = None
    created_at: str
    updated_at: str

    model_config = {"from_attributes": True}


class ConversationMessageResponse(BaseModel):
    id: int
    direction: str = Field(..., description="incoming or outgoing")
    body: str
    created_at: str

    model_config = {"from_attributes": True}


class BuildingResponse(BaseModel):
    id: str
    building_name: str
    building_code: str
    access_instructions: Optional[str] = None
    north_end_units: list[str] = Field(default_factory=list)
    south_end_units: list[str] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class ActivePinResponse(BaseModel):
    pin_code: str
    valid_from: date
    valid_until: date

    model_config = {"from_attributes": True}


class ConversationDetailResponse(BaseModel):
    """
    Response model for GET /conversations/{id}.

    Contains the conversation, its full message log in order, and, once a
    building is resolved, the building and its currently live PIN.
    """
    conversation: ConversationResponse
    messages: list[ConversationMessageResponse] = Field(default_factory=list)
    building: Optional[BuildingResponse] = None
    active_pin: Optional[ActivePinResponse] = None


class ConversationsListResponse(BaseModel):
    """
    Response model for GET /conversations endpoint with pagination.
    """
    data: list[ConversationResponse] = Field(
        default_factory=list,
        description="List of conversations"
    )
    total: int = Field(
        ...,
        ge=0,
        description="Total conversations matching filters (ignoring limit/offset)"
    )
    limit: int = Field(..., ge=1, le=100)
    offset: int = Field(..., ge=0)


class StatsResponse(BaseModel):
    """
    Response model for GET /stats endpoint.
    """
    total_conversations: int = Field(..., ge=0)
    conversations_by_state: dict[str, int] = Field(
        default_factory=dict,
        description="Conversation count per stored state"
    )
    total_messages: int = Field(..., ge=0, description="Audit rows across all conversations")
    pins_delivered: int = Field(..., ge=0)


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
