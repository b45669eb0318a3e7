import pytest

from app.models.order import OrderStatus, can_transition, statuses_allowing

S = OrderStatus


@pytest.mark.parametrize("source, target", [
    (S.AWAITING_PAYMENT, S.PROCESSING),
    (S.AWAITING_PAYMENT, S.CANCELLED),
    (S.PROCESSING, S.READY_FOR_PICKUP),
    (S.PROCESSING, S.SHIPPED),
    (S.READY_FOR_PICKUP, S.COLLECTED),
    (S.SHIPPED, S.DELIVERED),
])
def test_forward_moves_are_allowed(source, target):
    assert can_transition(source.value, target.value)


@pytest.mark.parametrize("source, target", [
    (S.PROCESSING, S.AWAITING_PAYMENT),
    (S.PROCESSING, S.CANCELLED),
    (S.CANCELLED, S.PROCESSING),
    (S.COMPLETED, S.PROCESSING),
    (S.AWAITING_PAYMENT, S.SHIPPED),
    (S.AWAITING_PAYMENT, S.AWAITING_PAYMENT),
])
def test_backward_and_skipping_moves_are_refused(source, target):
    assert not can_transition(source.value, target.value)


def test_unknown_status_never_transitions():
    assert not can_transition("refunded", S.PROCESSING.value)
    assert not can_transition(S.AWAITING_PAYMENT.value, "refunded")


def test_only_awaiting_payment_can_settle_or_cancel():
    assert statuses_allowing(S.PROCESSING.value) == [S.AWAITING_PAYMENT.value]
    assert statuses_allowing(S.CANCELLED.value) == [S.AWAITING_PAYMENT.value]


def test_final_states_have_no_exits():
    for final in (S.DELIVERED, S.PICKED_UP, S.COLLECTED, S.COMPLETED, S.CANCELLED):
        assert not any(can_transition(final.value, target.value) for target in S)
