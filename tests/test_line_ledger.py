"""
Tests for line_ledger: status derivation, quantity validation, event
application and the pandas event aggregation used for display.
"""

from datetime import datetime, timedelta
from itertools import permutations

import pytest

import line_ledger
from exceptions import InvalidQuantity, LineAlreadyComplete
from models import LineStatus, OrderLine, ScanEvent

T0 = datetime(2025, 11, 5, 9, 0, 0)


def event(delta, code='A1', seconds=0, reason=None):
    return ScanEvent(raw_code=code, code=code, delta=delta,
                     timestamp=T0 + timedelta(seconds=seconds), reason=reason)


# ============================================================================
# status_of()
# ============================================================================

class TestStatusOf:

    @pytest.mark.parametrize("expected, accumulated, confirmed, status", [
        (5, None, False, LineStatus.PENDING),
        (5, 3, False, LineStatus.SHORTAGE),
        (5, 5, False, LineStatus.CORRECT),
        (5, 7, False, LineStatus.EXCESS),
        (5, 7, True, LineStatus.CORRECT),
        (5, 5, True, LineStatus.CORRECT),
        (5, 3, True, LineStatus.SHORTAGE),
        (0, None, False, LineStatus.CORRECT),
        (0, 2, False, LineStatus.CORRECT),
    ])
    def test_derivation(self, expected, accumulated, confirmed, status):
        line = OrderLine('A1', expected, accumulated_quantity=accumulated, excess_confirmed=confirmed)
        assert line_ledger.status_of(line) == status

    def test_is_idempotent(self):
        line = OrderLine('A1', 5, accumulated_quantity=3)
        assert line_ledger.status_of(line) == line_ledger.status_of(line)

    def test_reason_does_not_change_status(self):
        line = OrderLine('A1', 5, accumulated_quantity=3, shortage_reason='stock')
        assert line_ledger.status_of(line) == LineStatus.SHORTAGE

    def test_numeric_status_ignores_confirmation(self):
        line = OrderLine('A1', 5, accumulated_quantity=7, excess_confirmed=True)
        assert line_ledger.numeric_status_of(line) == LineStatus.EXCESS

    def test_is_resolved(self):
        assert line_ledger.is_resolved(OrderLine('A1', 5, accumulated_quantity=5))
        assert line_ledger.is_resolved(OrderLine('A1', 5, accumulated_quantity=3, shortage_reason='stock'))
        assert not line_ledger.is_resolved(OrderLine('A1', 5, accumulated_quantity=3, shortage_reason='  '))
        assert not line_ledger.is_resolved(OrderLine('A1', 5, accumulated_quantity=7))
        assert not line_ledger.is_resolved(OrderLine('A1', 5))
        assert not line_ledger.is_resolved(OrderLine('A1', 5, accumulated_quantity=3, excess_confirmed=True))


# ============================================================================
# coerce_quantity()
# ============================================================================

class TestCoerceQuantity:

    @pytest.mark.parametrize("raw, value", [(1, 1), (-2, -2), ("3", 3), (" -4 ", -4), (5.0, 5)])
    def test_accepted(self, raw, value):
        assert line_ledger.coerce_quantity(raw) == value

    @pytest.mark.parametrize("raw", [0, "0", True, 1.5, float('nan'), float('inf'), "abc", "", None, [1]])
    def test_rejected(self, raw):
        with pytest.raises(InvalidQuantity) as exc_info:
            line_ledger.coerce_quantity(raw, code='A1')
        assert exc_info.value.code == 'A1'


# ============================================================================
# apply() / effective_delta()
# ============================================================================

class TestApply:

    def test_first_event_sets_quantity(self):
        line = line_ledger.apply(OrderLine('A1', 5), event(3))
        assert line.accumulated_quantity == 3

    def test_input_line_is_not_modified(self):
        original = OrderLine('A1', 5)
        line_ledger.apply(original, event(3))
        assert original.accumulated_quantity is None

    def test_quantity_is_sum_of_deltas_in_any_order(self):
        deltas = [3, 4, 2, 1]
        for order in permutations(deltas):
            line = OrderLine('A1', 5)
            for d in order:
                line = line_ledger.apply(line, event(d))
            assert line.accumulated_quantity == sum(deltas)

    def test_withdrawal_is_subtracted(self):
        line = OrderLine('A1', 5)
        for d in [4, 3, -2]:
            line = line_ledger.apply(line, event(d))
        assert line.accumulated_quantity == 5

    def test_negative_total_is_rejected(self):
        line = OrderLine('A1', 5, accumulated_quantity=2)
        with pytest.raises(InvalidQuantity):
            line_ledger.apply(line, event(-3))

    def test_negative_first_event_is_rejected(self):
        with pytest.raises(InvalidQuantity):
            line_ledger.apply(OrderLine('A1', 5), event(-1))

    def test_most_recent_non_empty_reason_wins(self):
        line = OrderLine('A1', 5)
        line = line_ledger.apply(line, event(1, reason='Out of stock'))
        line = line_ledger.apply(line, event(1, reason='Damaged product'))
        line = line_ledger.apply(line, event(1, reason='   '))
        assert line.shortage_reason == 'Damaged product'


class TestConfirmedLineCapping:

    def test_positive_delta_is_capped_to_missing_units(self):
        line = OrderLine('A1', 5, accumulated_quantity=3, excess_confirmed=True)
        assert line_ledger.effective_delta(line, 4) == 2

    def test_complete_confirmed_line_rejects_more_units(self):
        line = OrderLine('A1', 5, accumulated_quantity=7, excess_confirmed=True)
        with pytest.raises(LineAlreadyComplete):
            line_ledger.effective_delta(line, 1)

    def test_unconfirmed_line_is_not_capped(self):
        line = OrderLine('A1', 5, accumulated_quantity=5)
        assert line_ledger.effective_delta(line, 3) == 3

    def test_drop_below_expected_clears_confirmation(self):
        line = OrderLine('A1', 5, accumulated_quantity=7, excess_confirmed=True)
        updated = line_ledger.apply(line, event(-3))
        assert updated.accumulated_quantity == 4
        assert not updated.excess_confirmed
        assert updated.displayed_quantity == 4
        assert line_ledger.status_of(updated) == LineStatus.SHORTAGE

    def test_drop_to_expected_keeps_confirmation(self):
        line = OrderLine('A1', 5, accumulated_quantity=7, excess_confirmed=True)
        assert line_ledger.apply(line, event(-2)).excess_confirmed


# ============================================================================
# aggregate_events()
# ============================================================================

class TestAggregateEvents:

    def test_empty(self):
        df = line_ledger.aggregate_events([])
        assert df.empty
        assert list(df.columns) == line_ledger.EVENT_COLUMNS

    def test_quantities_are_summed_not_last(self):
        df = line_ledger.aggregate_events([event(3, seconds=1), event(4, seconds=2), event(-2, seconds=3)])
        row = df.iloc[0]
        assert row['code'] == 'A1'
        assert row['quantity'] == 5
        assert row['scans'] == 3

    def test_latest_non_empty_reason_wins(self):
        df = line_ledger.aggregate_events([
            event(1, seconds=1, reason='Out of stock'),
            event(1, seconds=2, reason='Item not found'),
            event(1, seconds=3, reason=''),
            event(1, seconds=4),
        ])
        assert df.iloc[0]['reason'] == 'Item not found'

    def test_reason_is_none_when_never_given(self):
        df = line_ledger.aggregate_events([event(1)])
        assert df.iloc[0]['reason'] is None

    def test_rows_are_most_recent_first(self):
        df = line_ledger.aggregate_events([
            event(1, code='A1', seconds=1),
            event(1, code='B2', seconds=2),
            event(1, code='A1', seconds=3),
            event(1, code='C3', seconds=4),
        ])
        assert list(df['code']) == ['C3', 'A1', 'B2']
        assert df.iloc[1]['last_scan'] == T0 + timedelta(seconds=3)
