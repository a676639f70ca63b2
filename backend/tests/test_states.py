"""
상태 분류 / 허용 전이 테스트
"""

import random

import pytest

from entregas.core.errors import InvalidTransition
from entregas.core.states import (
    ACTIVE_STATES, ALLOWED_TRANSITIONS, TERMINAL_STATES, ShipmentState, allowed_next,
    can_transition, describe, ensure_transition, is_active, is_terminal,
)

S = ShipmentState


class TestClassification:
    def test_terminal_states(self):
        assert TERMINAL_STATES == {S.DELIVERED, S.CANCELLED}
        assert is_terminal(S.DELIVERED)
        assert is_terminal(S.CANCELLED)
        assert not is_terminal(S.CREATED)

    def test_terminal_states_have_no_successors(self):
        for state in TERMINAL_STATES:
            assert allowed_next(state) == frozenset()

    def test_abandoned_is_neither_terminal_nor_active(self):
        assert not is_terminal(S.COURIER_ABANDONED)
        assert not is_active(S.COURIER_ABANDONED)

    def test_active_states(self):
        assert is_active(S.CREATED)
        assert is_active(S.EN_ROUTE)
        assert not is_active(S.DELIVERED)
        assert S.COURIER_ABANDONED not in ACTIVE_STATES

    def test_every_state_is_classified(self):
        assert set(ALLOWED_TRANSITIONS) == set(S)

    def test_every_state_has_description(self):
        for state in S:
            assert describe(state)


class TestEdges:
    @pytest.mark.parametrize("source,target", [
        (S.CREATED, S.OFFERED),
        (S.CREATED, S.COUNTER_OFFER),
        (S.CREATED, S.ACCEPTED_OFFER),
        (S.OFFERED, S.ACCEPTED_OFFER),
        (S.OFFERED, S.CREATED),
        (S.COUNTER_OFFER, S.ACCEPTED_OFFER),
        (S.COUNTER_OFFER, S.CREATED),
        (S.ACCEPTED_OFFER, S.PAID),
        (S.PAID, S.DISPATCHING),
        (S.DISPATCHING, S.ASSIGNED),
        (S.ASSIGNED, S.ARRIVED_PICKUP),
        (S.ARRIVED_PICKUP, S.PICKED_UP),
        (S.PICKED_UP, S.EN_ROUTE),
        (S.EN_ROUTE, S.ARRIVED_DROPOFF),
        (S.ARRIVED_DROPOFF, S.DELIVERED),
        (S.ACCEPTED_OFFER, S.COURIER_ABANDONED),
        (S.PAID, S.COURIER_ABANDONED),
        (S.ASSIGNED, S.COURIER_ABANDONED),
        (S.EN_ROUTE, S.COURIER_ABANDONED),
        (S.COURIER_ABANDONED, S.CREATED),
    ])
    def test_canonical_edges_allowed(self, source, target):
        assert can_transition(source, target)
        ensure_transition(source, target)

    @pytest.mark.parametrize("source,target", [
        (S.CREATED, S.DELIVERED),
        (S.OFFERED, S.COUNTER_OFFER),
        (S.ACCEPTED_OFFER, S.ACCEPTED_OFFER),
        (S.PICKED_UP, S.OFFERED),
        (S.PAYMENT_PENDING, S.COURIER_ABANDONED),
        (S.DELIVERED, S.CREATED),
        (S.CANCELLED, S.CREATED),
        (S.EN_ROUTE, S.PICKED_UP),
    ])
    def test_non_edges_rejected(self, source, target):
        assert not can_transition(source, target)
        with pytest.raises(InvalidTransition):
            ensure_transition(source, target, shipment_id="ship-1")

    def test_invalid_transition_carries_shipment_id(self):
        with pytest.raises(InvalidTransition) as exc_info:
            ensure_transition(S.DELIVERED, S.CREATED, shipment_id="ship-9")
        assert exc_info.value.shipment_id == "ship-9"
        assert "DELIVERED" in exc_info.value.message

    def test_every_non_terminal_state_can_be_cancelled(self):
        for state in set(S) - TERMINAL_STATES:
            assert S.CANCELLED in allowed_next(state), state

    def test_every_state_reachable_from_created(self):
        reachable = {S.CREATED}
        frontier = [S.CREATED]
        while frontier:
            for nxt in allowed_next(frontier.pop()):
                if nxt not in reachable:
                    reachable.add(nxt)
                    frontier.append(nxt)
        assert reachable == set(S)


class TestRandomWalk:
    @pytest.mark.parametrize("seed", range(20))
    def test_random_walk_only_follows_enumerated_edges(self, seed):
        """임의 목표 상태를 시도해 허용 간선만 통과하는지 확인"""
        rng = random.Random(seed)
        states = list(S)
        current = S.CREATED
        for _ in range(200):
            target = rng.choice(states)
            if target in ALLOWED_TRANSITIONS[current]:
                ensure_transition(current, target)
                current = target
            else:
                with pytest.raises(InvalidTransition):
                    ensure_transition(current, target)
            if is_terminal(current):
                current = S.CREATED
