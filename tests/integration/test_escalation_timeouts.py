"""Integration tests for escalation to tickets and the timeout checks.

Tests:
  - manual escalation carries the transcript, session metadata and context
  - the held operator is freed and offered the queue head
  - finished sessions cannot be escalated again
  - unanswered assignments escalate with operator_timeout
  - sessions waiting past the queue timeout escalate with queue_timeout
  - a runtime policy update takes effect for the next unit of work
  - quiet live chats get exactly one inactivity reminder
  - notification switches suppress timeout and escalation webhooks
"""

from __future__ import annotations

import pytest

from livedesk.core.exceptions import StateError
from livedesk.models.enums import EscalationReason, OperatorPresence, SenderType, SessionStatus
from livedesk.schemas.chat import SupportRequest
from livedesk.services.desk import SupportDesk
from livedesk.services.escalation import TRANSCRIPT_SEPARATOR


async def _live_chat(desk, make_operator, request_chat, **fields):
    alice = await make_operator("Alice")
    session = (await request_chat("My parcel never arrived", **fields)).session
    async with desk.unit() as services:
        await services.queue.accept_chat(alice.id, session.id)
    return alice, session


class TestManualEscalation:
    """escalate_to_ticket from a live chat."""

    @pytest.mark.asyncio
    async def test_ticket_contents(
        self, desk, clock, make_operator, request_chat, notifier, recorder
    ) -> None:
        alice, session = await _live_chat(
            desk,
            make_operator,
            request_chat,
            user_email="sam@example.test",
            metadata={"order": "A-17"},
        )
        async with desk.unit() as services:
            await services.queue.post_message(session.id, SenderType.USER, "sam", "Still waiting")
        clock.advance(seconds=10)
        async with desk.unit() as services:
            await services.queue.post_message(
                session.id, SenderType.OPERATOR, str(alice.id), "Checking with the courier"
            )

        async with desk.unit() as services:
            ticket = await services.escalation.escalate_to_ticket(
                session.id, EscalationReason.MANUAL_ESCALATION
            )
            escalated = await services.store.get_session(session.id)

        assert ticket.question.split("\n") == [
            "My parcel never arrived",
            "",
            TRANSCRIPT_SEPARATOR,
            "Customer: Still waiting",
            "Operator: Checking with the courier",
        ]
        assert ticket.category == "escalated"
        assert ticket.user_email == "sam@example.test"
        assert ticket.metadata_["order"] == "A-17"
        assert ticket.metadata_["escalation_reason"] == "manual_escalation"
        assert ticket.metadata_["original_session_id"] == str(session.id)
        assert ticket.metadata_["escalated_from"] == "chat"

        assert escalated.status == SessionStatus.ESCALATED_TICKET
        assert escalated.ticket_id == ticket.id
        assert escalated.escalation_reason == "manual_escalation"
        assert escalated.ended_at == clock.now()

        assert notifier.events() == ["ticket_created", "escalation"]
        event = recorder.of("session:escalated")[-1]
        assert event["ticket_id"] == str(ticket.id)
        assert event["operator_id"] == str(alice.id)

    @pytest.mark.asyncio
    async def test_operator_freed_and_reassigned(
        self, desk, make_operator, request_chat
    ) -> None:
        alice, session = await _live_chat(desk, make_operator, request_chat)
        waiting = await request_chat("next in line")

        async with desk.unit() as services:
            await services.escalation.escalate_to_ticket(
                session.id, EscalationReason.MANUAL_ESCALATION
            )
            operator = await services.store.get_operator(alice.id)
            head = await services.store.get_session(waiting.session.id)

        assert operator.presence == OperatorPresence.BUSY
        assert operator.current_session_id == waiting.session.id
        assert head.status == SessionStatus.OPERATOR_ASSIGNED

    @pytest.mark.asyncio
    async def test_terminal_session_rejected(self, desk, make_operator, request_chat) -> None:
        alice, session = await _live_chat(desk, make_operator, request_chat)
        async with desk.unit() as services:
            await services.queue.end_chat(session.id, alice.id)

        with pytest.raises(StateError):
            async with desk.unit() as services:
                await services.escalation.escalate_to_ticket(
                    session.id, EscalationReason.MANUAL_ESCALATION
                )


class TestTimeouts:
    """check_timeouts driven by the manual clock."""

    @pytest.mark.asyncio
    async def test_nothing_due(self, desk, make_operator, request_chat) -> None:
        await make_operator("Alice")
        await request_chat()

        async with desk.unit() as services:
            counts = await services.escalation.check_timeouts()

        assert counts == {"operator_timeout": 0, "queue_timeout": 0}

    @pytest.mark.asyncio
    async def test_operator_response_timeout(
        self, desk, clock, make_operator, request_chat, notifier
    ) -> None:
        """Assigned but not accepted for 6 minutes (limit 5) → operator_timeout."""
        alice = await make_operator("Alice")
        session = (await request_chat()).session
        clock.advance(minutes=6)

        async with desk.unit() as services:
            counts = await services.escalation.check_timeouts()
            escalated = await services.store.get_session(session.id)
            operator = await services.store.get_operator(alice.id)

        assert counts == {"operator_timeout": 1, "queue_timeout": 0}
        assert escalated.status == SessionStatus.ESCALATED_TICKET
        assert escalated.escalation_reason == "operator_timeout"
        assert operator.presence == OperatorPresence.AVAILABLE
        assert notifier.events() == ["operator_timeout", "ticket_created", "escalation"]

    @pytest.mark.asyncio
    async def test_accepted_chat_has_no_response_timeout(
        self, desk, clock, make_operator, request_chat
    ) -> None:
        await _live_chat(desk, make_operator, request_chat)
        clock.advance(minutes=30)

        async with desk.unit() as services:
            counts = await services.escalation.check_timeouts()

        assert counts["operator_timeout"] == 0

    @pytest.mark.asyncio
    async def test_queue_timeout(self, desk, clock, request_chat) -> None:
        """Only the session older than 15 minutes is escalated."""
        stale = (await request_chat("waited too long")).session
        clock.advance(minutes=10)
        fresh = (await request_chat("just arrived")).session
        clock.advance(minutes=6)

        async with desk.unit() as services:
            counts = await services.escalation.check_timeouts()
            stale_now = await services.store.get_session(stale.id)
            fresh_now = await services.store.get_session(fresh.id)

        assert counts == {"operator_timeout": 0, "queue_timeout": 1}
        assert stale_now.status == SessionStatus.ESCALATED_TICKET
        assert stale_now.escalation_reason == "queue_timeout"
        assert fresh_now.status == SessionStatus.QUEUE_WAITING
        assert fresh_now.queue_position == 1

    @pytest.mark.asyncio
    async def test_updated_queue_timeout_applies_to_next_unit(
        self, desk, clock, request_chat
    ) -> None:
        session = (await request_chat()).session
        clock.advance(minutes=6)

        desk.update_escalation_config({"queue_timeout_minutes": 5})
        async with desk.unit() as services:
            counts = await services.escalation.check_timeouts()
            rules = services.escalation.escalation_rules()
            swept = await services.store.get_session(session.id)

        assert counts["queue_timeout"] == 1
        assert rules["queue_timeout_minutes"] == 5
        assert rules["queue_capacity"] == 3
        assert swept.escalation_reason == "queue_timeout"

    @pytest.mark.asyncio
    async def test_notification_switches(
        self, session_factory, notifier, clock, config, make_operator
    ) -> None:
        quiet = SupportDesk(
            session_factory,
            notifier=notifier,
            clock=clock,
            config=config.model_copy(
                update={"notify_on_timeout": False, "notify_on_escalation": False}
            ),
        )
        await make_operator("Alice")
        await quiet.request_operator(SupportRequest(question="anyone?"))
        clock.advance(minutes=6)

        async with quiet.unit() as services:
            counts = await services.escalation.check_timeouts()

        assert counts["operator_timeout"] == 1
        assert notifier.events() == ["ticket_created"]


class TestInactivityReminder:
    """remind_inactive_chats fires once per quiet chat."""

    @pytest.mark.asyncio
    async def test_single_reminder(self, desk, clock, make_operator, request_chat, notifier) -> None:
        _, session = await _live_chat(desk, make_operator, request_chat)
        clock.advance(minutes=11)

        async with desk.unit() as services:
            first = await services.escalation.remind_inactive_chats()
        async with desk.unit() as services:
            second = await services.escalation.remind_inactive_chats()
            reminded = await services.store.get_session(session.id)

        assert first == 1
        assert second == 0
        assert notifier.events().count("chat_inactivity_reminder") == 1
        assert reminded.metadata_["inactivity_reminded_at"] == clock.now().isoformat()

    @pytest.mark.asyncio
    async def test_recent_message_keeps_chat_active(
        self, desk, clock, make_operator, request_chat
    ) -> None:
        _, session = await _live_chat(desk, make_operator, request_chat)
        clock.advance(minutes=8)
        async with desk.unit() as services:
            await services.queue.post_message(session.id, SenderType.USER, "sam", "hello?")
        clock.advance(minutes=8)

        async with desk.unit() as services:
            reminded = await services.escalation.remind_inactive_chats()

        assert reminded == 0
