"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

import enum

from sqlalchemy import JSON, Column, Date, ForeignKey, Integer, String, Text

from app.storage import Base


class ConversationState(str, enum.Enum):
    """Values stored in conversations.state."""
    INITIAL = "initial"
    AWAITING_INFO = "awaiting_info"
    CONFIRMING = "confirming"
    PIN_DELIVERED = "pin_delivered"
    COMPLETED = "completed"


class MessageDirection(str, enum.Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"


class Building(Base):
    """
    Static reference data for one building of the property.

    Table: buildings
    building_code is the single letter that prefixes every unit number
    in the building.
    """
    __tablename__ = "buildings"

    id = Column(String, primary_key=True)
    building_name = Column(String, nullable=False)
    building_code = Column(String(1), nullable=False, unique=True, index=True)
    access_instructions = Column(Text, nullable=True)
    north_end_units = Column(JSON, nullable=False, default=list)
    south_end_units = Column(JSON, nullable=False, default=list)


class ValidUnit(Base):
    """Registry of unit numbers that exist at the property."""
    __tablename__ = "valid_units"

    unit_number = Column(String(3), primary_key=True)


class ActivePin(Base):
    """
    Access PIN for a building over an inclusive date window.

    Table: active_pins
    Historical rows are kept; only the row covering today is live.
    """
    __tablename__ = "active_pins"

    id = Column(Integer, primary_key=True, autoincrement=True)
    building_id = Column(String, ForeignKey("buildings.id"), nullable=False, index=True)
    pin_code = Column(String(4), nullable=False)
    valid_from = Column(Date, nullable=False)
    valid_until = Column(Date, nullable=False, index=True)


class Conversation(Base):
    """
    One SMS dialogue with a contractor's phone number.

    Table: conversations
    At most one row per phone_number is in a state other than completed.
    """
    __tablename__ = "conversations"

    id = Column(String, primary_key=True)
    phone_number = Column(String, nullable=False, index=True)
    company_name = Column(String, nullable=True)
    building_id = Column(String, ForeignKey("buildings.id"), nullable=True)
    unit_number = Column(String(3), nullable=True)
    roof_end = Column(String, nullable=True)  # north | south
    state = Column(String, nullable=False, index=True)
    pin_delivered_at = Column(String, nullable=True)  # ISO-8601 UTC string
    created_at = Column(String, nullable=False, index=True)
    updated_at = Column(String, nullable=False)


class ConversationMessage(Base):
    """
    Append-only audit row for every inbound or outbound text.

    Table: conversation_messages
    """
    __tablename__ = "conversation_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(String, ForeignKey("conversations.id"), nullable=False, index=True)
    direction = Column(String, nullable=False)
    body = Column(Text, nullable=False)
    created_at = Column(String, nullable=False)
