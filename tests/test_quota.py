from decimal import Decimal

import pytest

from benefit_ledger.core.errors import ValidationError
from benefit_ledger.services.quota import (
    ERROR,
    SUCCESS,
    WARNING,
    allocate,
    is_blocked_by_prior_overflow,
    unused_to_taxable_conversion,
)

D = Decimal


def test_partial_allocation_is_last_claim():
    a = allocate(D("300"), D("1000"), D("800"))
    assert a.permitted is True
    assert a.considered == D("200.00")
    assert a.not_considered == D("100.00")
    assert a.blocked_after is True
    assert a.severity == WARNING
    assert a.is_partial


def test_exhausted_ceiling_refuses():
    a = allocate(D("50"), D("1000"), D("1000"))
    assert a.permitted is False
    assert a.considered == D("0")
    assert a.not_considered == D("50.00")
    assert a.severity == ERROR


def test_fits_within_ceiling():
    a = allocate(D("250.10"), D("1000"), D("100"))
    assert a.permitted and not a.blocked_after
    assert a.considered == D("250.10")
    assert a.not_considered == 0
    assert a.severity == SUCCESS
    assert "R$ 649.90" in a.message


def test_exact_fit_is_not_partial():
    a = allocate(D("200"), D("1000"), D("800"))
    assert a.considered == D("200.00")
    assert a.not_considered == 0
    assert a.blocked_after is False


@pytest.mark.parametrize(
    "requested,ceiling,used",
    [("0.01", "1000", "999.99"), ("12.34", "10", "0"), ("999", "0", "0"), ("5", "100", "150")],
)
def test_split_always_sums_to_requested(requested, ceiling, used):
    a = allocate(D(requested), D(ceiling), D(used))
    assert a.considered + a.not_considered == D(requested)
    assert a.considered >= 0 and a.not_considered >= 0


def test_non_positive_amount_rejected():
    with pytest.raises(ValidationError):
        allocate(D("0"), D("1000"), D("0"))
    with pytest.raises(ValidationError):
        allocate(D("-5"), D("1000"), D("0"))


def test_cent_rounding_half_up():
    a = allocate(D("10.005"), D("1000"), D("0"))
    assert a.considered == D("10.01")


def test_currency_symbol_in_message():
    a = allocate(D("50"), D("100"), D("100"), symbol="$")
    assert "$ 100.00" in a.message


def test_prior_overflow_blocks_only_without_room():
    assert is_blocked_by_prior_overflow([D("0"), D("100")], D("0")) is True
    # ceiling raised afterwards lifts the block
    assert is_blocked_by_prior_overflow([D("100")], D("500")) is False
    assert is_blocked_by_prior_overflow([D("0"), D("0")], D("0")) is False
    assert is_blocked_by_prior_overflow([], D("0")) is False


def test_taxable_conversion():
    assert unused_to_taxable_conversion(D("1000"), D("700")) == D("300.00")
    assert unused_to_taxable_conversion(D("1000"), D("1000")) == 0
    assert unused_to_taxable_conversion(D("1000"), D("1200")) == 0
