"""
Contractor access conversation handler.

Each inbound SMS is one turn. A turn loads the phone number's active
conversation, dispatches on its phase, and commits every state change and
audit row of the turn in a single transaction before the reply is returned.

Phases:
    NO_CONVERSATION -> AWAITING_INFO    valid company name
    AWAITING_INFO   -> CONFIRMING       unit and side resolved to a building
    CONFIRMING      -> AWAITING_INFO    anything but a yes
    CONFIRMING      -> COMPLETED        yes, inside the service window, live PIN
"""

import enum
import logging
import threading
import weakref
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, NamedTuple, Optional

from sqlalchemy.orm import Session

from app.access_policy import WindowStatus, check_service_window, property_today, to_property_time
from app.config import settings
from app.directory import ResolutionFailure, resolve_unit
from app.models import ConversationState, MessageDirection
from app.storage import (
    create_conversation,
    get_active_conversation,
    get_active_pin,
    get_building_by_id,
    log_message,
    update_conversation,
    utc_timestamp,
)
from app.validation import extract_unit_and_side, is_affirmative, is_legitimate_company_name

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

EXAMPLE_REPLY = 'Example: "B2G South end"'


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Phase(str, enum.Enum):
    NO_CONVERSATION = "none"
    AWAITING_INFO = "awaiting_info"
    CONFIRMING = "confirming"
    PIN_DELIVERED = "pin_delivered"
    COMPLETED = "completed"
    UNKNOWN = "unknown"


_STATE_PHASES = {
    ConversationState.INITIAL.value: Phase.AWAITING_INFO,
    ConversationState.AWAITING_INFO.value: Phase.AWAITING_INFO,
    ConversationState.CONFIRMING.value: Phase.CONFIRMING,
    ConversationState.PIN_DELIVERED.value: Phase.PIN_DELIVERED,
    ConversationState.COMPLETED.value: Phase.COMPLETED,
}


def phase_of(conversation) -> Phase:
    if conversation is None:
        return Phase.NO_CONVERSATION
    return _STATE_PHASES.get(conversation.state, Phase.UNKNOWN)


class TurnOutcome(str, enum.Enum):
    COMPANY_REJECTED = "company_rejected"
    CONVERSATION_STARTED = "conversation_started"
    UNIT_OR_SIDE_MISSING = "unit_or_side_missing"
    UNIT_UNKNOWN = "unit_unknown"
    BUILDING_UNMAPPED = "building_unmapped"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    RESTARTED = "restarted"
    OUTSIDE_HOURS_WEEKEND = "outside_hours_weekend"
    OUTSIDE_HOURS_OFF_HOURS = "outside_hours_off_hours"
    NO_ACTIVE_PIN = "no_active_pin"
    PIN_DELIVERED = "pin_delivered"
    UNEXPECTED_STATE = "unexpected_state"


class TurnResult(NamedTuple):
    reply: str
    outcome: TurnOutcome
    conversation_id: Optional[str] = None
    state: Optional[str] = None


# =============================================================================
# Reply Texts
# =============================================================================

def company_rejected_reply() -> str:
    return "Please provide a valid company name to request access."


def greeting_reply(company_name: str) -> str:
    return (
        f"Hello {company_name}! Thank you for contacting us.\n\n"
        "To provide you with the correct access PIN, please tell me:\n\n"
        "1. What unit number are you servicing?\n"
        "2. Which end of the building (north or south)?\n\n"
        f"{EXAMPLE_REPLY}"
    )


def need_unit_and_side_reply() -> str:
    return (
        "I need both the unit number (like B2G) and the roof end (north or south). "
        f"Please provide both.\n\n{EXAMPLE_REPLY}"
    )


def unit_unknown_reply(unit_number: str) -> str:
    return (
        f'Unfortunately, "{unit_number}" is not a valid Unit # here at {settings.PROPERTY_NAME}. '
        "Please double-check the Unit # and try again."
    )


def building_unmapped_reply(unit_number: str) -> str:
    return f"Unable to determine building for unit {unit_number}. Please contact property management."


def confirmation_reply(now: datetime, company_name: str, building_name: str, unit_number: str, side: str) -> str:
    local = to_property_time(now)
    today = f"{local:%A, %B} {local.day}, {local.year}"
    return (
        "Perfect! Let me confirm:\n\n"
        f"• Date: {today}\n"
        f"• Company: {company_name}\n"
        f"• Building: {building_name}\n"
        f"• Unit: {unit_number}\n"
        f"• Roof End: {side.capitalize()}\n\n"
        'Is this correct? (Reply "yes" or "Y" to receive the access PIN)'
    )


def restart_reply() -> str:
    return (
        "Let's start over. Please provide the unit number and roof end (north or south).\n\n"
        f"{EXAMPLE_REPLY}"
    )


def outside_hours_reply(status: WindowStatus) -> str:
    if status is WindowStatus.WEEKEND:
        detail = ""
        closing = "Regular service requests will be processed on the next business day."
    else:
        detail = "Current time is outside permitted work hours.\n\n"
        closing = "Regular service requests will be processed during business hours."
    return (
        "⚠️ SERVICE HOURS NOTICE\n\n"
        "Contractor work is only permitted Monday-Friday, 8:00 AM - 5:00 PM.\n\n"
        f"{detail}"
        "For emergency service needs, please call:\n"
        f"📞 {settings.EMERGENCY_CONTACT}\n\n"
        f"{closing}"
    )


def no_active_pin_reply() -> str:
    return (
        "I apologize, but there's no active PIN available for this building at the moment. "
        "Please contact the property manager directly."
    )


def pin_delivery_reply(pin_code: str, building_name: str, unit_number: str) -> str:
    return (
        "Here's your access information:\n\n"
        f"🔑 PIN: {pin_code}\n"
        f"📍 Building: {building_name}\n"
        f"🏢 Unit: {unit_number}\n\n"
        "Access Instructions:\n"
        "1. Use provided PIN to open lock box with key to roof/lock inside\n"
        "2. Secure all doors when finished (5:00 PM work cutoff)\n"
        "3. Return key to lockbox and close it\n\n"
        "⚠️ WORK HOURS: Monday-Friday, 8:00 AM - 5:00 PM ONLY\n\n"
        "Thank you and have a safe workday!"
    )


def unexpected_state_reply() -> str:
    return (
        "I'm sorry, there seems to be an issue with our conversation. "
        "Please start over by texting your company name."
    )


# =============================================================================
# Handler
# =============================================================================

class ConversationHandler:
    """
    Drives one turn of the contractor access dialogue.

    The handler does not own the session: it commits on success and rolls
    back and re-raises on any error, leaving the session usable.
    """

    def __init__(self, db: Session, clock: Clock = utc_now):
        self.db = db
        self.clock = clock
        self._handlers = {
            Phase.NO_CONVERSATION: self._handle_initial_contact,
            Phase.AWAITING_INFO: self._handle_unit_info,
            Phase.CONFIRMING: self._handle_confirmation,
        }

    def handle(self, phone_number: str, text: str) -> str:
        return self.process(phone_number, text).reply

    def process(self, phone_number: str, text: str) -> TurnResult:
        now = self.clock()
        try:
            conversation = get_active_conversation(self.db, phone_number)
            phase = phase_of(conversation)
            logger.info(
                f"Turn for conversation {conversation.id if conversation else None}: phase={phase.value}"
            )
            handler = self._handlers.get(phase, self._handle_unexpected)
            result = handler(conversation, phone_number, text, now)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        logger.info(f"Turn finished: outcome={result.outcome.value}, state={result.state}")
        return result

    def _exchange(self, conversation, incoming: str, reply: str, now: datetime) -> None:
        log_message(self.db, conversation.id, MessageDirection.INCOMING.value, incoming, now)
        log_message(self.db, conversation.id, MessageDirection.OUTGOING.value, reply, now)

    def _result(self, conversation, reply: str, outcome: TurnOutcome) -> TurnResult:
        return TurnResult(
            reply=reply,
            outcome=outcome,
            conversation_id=conversation.id if conversation else None,
            state=conversation.state if conversation else None,
        )

    def _handle_initial_contact(self, conversation, phone_number: str, text: str, now: datetime) -> TurnResult:
        company_name = text.strip()

        if not is_legitimate_company_name(company_name):
            # No conversation and no audit rows for rejected names
            return self._result(None, company_rejected_reply(), TurnOutcome.COMPANY_REJECTED)

        conversation = create_conversation(self.db, phone_number, company_name, now)
        reply = greeting_reply(company_name)
        self._exchange(conversation, text, reply, now)
        return self._result(conversation, reply, TurnOutcome.CONVERSATION_STARTED)

    def _handle_unit_info(self, conversation, phone_number: str, text: str, now: datetime) -> TurnResult:
        extracted = extract_unit_and_side(text)

        if not extracted.complete:
            reply = need_unit_and_side_reply()
            self._exchange(conversation, text, reply, now)
            return self._result(conversation, reply, TurnOutcome.UNIT_OR_SIDE_MISSING)

        resolution = resolve_unit(self.db, extracted.unit, extracted.side)

        if resolution.failure is ResolutionFailure.UNIT_UNKNOWN:
            reply = unit_unknown_reply(extracted.unit)
            self._exchange(conversation, text, reply, now)
            return self._result(conversation, reply, TurnOutcome.UNIT_UNKNOWN)

        if resolution.failure is ResolutionFailure.BUILDING_UNMAPPED:
            reply = building_unmapped_reply(extracted.unit)
            self._exchange(conversation, text, reply, now)
            return self._result(conversation, reply, TurnOutcome.BUILDING_UNMAPPED)

        building = resolution.building
        update_conversation(
            self.db,
            conversation,
            now,
            building_id=building.id,
            unit_number=extracted.unit,
            roof_end=extracted.side,
            state=ConversationState.CONFIRMING.value,
        )
        reply = confirmation_reply(
            now, conversation.company_name, building.building_name, extracted.unit, extracted.side
        )
        self._exchange(conversation, text, reply, now)
        return self._result(conversation, reply, TurnOutcome.AWAITING_CONFIRMATION)

    def _handle_confirmation(self, conversation, phone_number: str, text: str, now: datetime) -> TurnResult:
        if not conversation.building_id:
            logger.error(f"Conversation {conversation.id} is confirming without a building")
            return self._handle_unexpected(conversation, phone_number, text, now)

        if not is_affirmative(text):
            update_conversation(
                self.db,
                conversation,
                now,
                building_id=None,
                unit_number=None,
                roof_end=None,
                state=ConversationState.AWAITING_INFO.value,
            )
            reply = restart_reply()
            self._exchange(conversation, text, reply, now)
            return self._result(conversation, reply, TurnOutcome.RESTARTED)

        window = check_service_window(now)
        if window is not WindowStatus.OK:
            reply = outside_hours_reply(window)
            self._exchange(conversation, text, reply, now)
            outcome = (
                TurnOutcome.OUTSIDE_HOURS_WEEKEND
                if window is WindowStatus.WEEKEND
                else TurnOutcome.OUTSIDE_HOURS_OFF_HOURS
            )
            return self._result(conversation, reply, outcome)

        pin = get_active_pin(self.db, conversation.building_id, property_today(now))
        if pin is None:
            reply = no_active_pin_reply()
            self._exchange(conversation, text, reply, now)
            return self._result(conversation, reply, TurnOutcome.NO_ACTIVE_PIN)

        building = get_building_by_id(self.db, conversation.building_id)
        update_conversation(
            self.db,
            conversation,
            now,
            state=ConversationState.COMPLETED.value,
            pin_delivered_at=utc_timestamp(now),
        )
        reply = pin_delivery_reply(pin.pin_code, building.building_name, conversation.unit_number)
        self._exchange(conversation, text, reply, now)
        logger.info(f"PIN delivered for conversation {conversation.id}")
        return self._result(conversation, reply, TurnOutcome.PIN_DELIVERED)

    def _handle_unexpected(self, conversation, phone_number: str, text: str, now: datetime) -> TurnResult:
        logger.warning(
            f"Conversation {conversation.id if conversation else None} in unexpected state "
            f"{conversation.state if conversation else None}"
        )
        return self._result(conversation, unexpected_state_reply(), TurnOutcome.UNEXPECTED_STATE)


# =============================================================================
# Per-Phone Serialization
# =============================================================================

class PhoneLocks:
    """
    One lock per phone number, dropped once no turn holds it.

    Turns for the same number read then update the conversation in separate
    statements, so they must not overlap.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = weakref.WeakValueDictionary()

    def _lock_for(self, phone_number: str):
        with self._guard:
            lock = self._locks.get(phone_number)
            if lock is None:
                lock = threading.Lock()
                self._locks[phone_number] = lock
            return lock

    @contextmanager
    def hold(self, phone_number: str):
        lock = self._lock_for(phone_number)
        with lock:
            yield


phone_locks = PhoneLocks()


def process_inbound(db: Session, phone_number: str, text: str, clock: Clock = utc_now) -> TurnResult:
    """Run one turn while holding the sender's lock."""
    with phone_locks.hold(phone_number):
        return ConversationHandler(db, clock).process(phone_number, text)
