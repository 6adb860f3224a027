import pytest

from conductor.support.errors import InvalidTransitionError
from conductor.support.state import TicketStateMachine, TicketStatus


def test_ticket_state_machine_allows_expected_transitions():
    assert TicketStateMachine.initial_state() is TicketStatus.OPEN
    assert TicketStateMachine.can_transition(TicketStatus.OPEN, TicketStatus.IN_PROGRESS)
    assert TicketStateMachine.can_transition(TicketStatus.OPEN, TicketStatus.CLOSED)
    assert TicketStateMachine.can_transition(TicketStatus.IN_PROGRESS, TicketStatus.CLOSED)
    assert TicketStateMachine.can_transition(TicketStatus.CLOSED, TicketStatus.IN_PROGRESS)


@pytest.mark.parametrize(
    ("current", "new"),
    [
        (TicketStatus.CLOSED, TicketStatus.OPEN),
        (TicketStatus.IN_PROGRESS, TicketStatus.OPEN),
        (TicketStatus.OPEN, TicketStatus.OPEN),
        (TicketStatus.CLOSED, TicketStatus.CLOSED),
    ],
)
def test_ticket_state_machine_blocks_invalid_transitions(current, new):
    assert not TicketStateMachine.can_transition(current, new)
    with pytest.raises(InvalidTransitionError) as exc:
        TicketStateMachine.assert_transition(current, new)
    assert exc.value.status_code == 409
    assert exc.value.code == "invalid_transition"
