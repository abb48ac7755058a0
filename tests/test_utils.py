import datetime
import importlib
from decimal import Decimal

import pytest

utils = importlib.import_module("bidhouse.utils")


def test_to_money_is_exact():
    assert utils.to_money("10.10") == Decimal("10.10")
    assert utils.to_money(10.1) == Decimal("10.1")
    assert utils.to_money(7) == Decimal(7)


@pytest.mark.parametrize("bad", ["abc", None, "NaN", "Infinity"])
def test_to_money_rejects_garbage(bad):
    with pytest.raises(ValueError):
        utils.to_money(bad)


def test_iso_strings_are_fixed_width_and_round_trip():
    a = datetime.datetime(2025, 1, 1, tzinfo=datetime.timezone.utc)
    b = a + datetime.timedelta(microseconds=5)
    assert len(utils.to_iso(a)) == len(utils.to_iso(b))
    assert utils.to_iso(a) < utils.to_iso(b)
    assert utils.from_iso(utils.to_iso(b)) == b


def test_naive_and_offset_times_normalise_to_utc():
    naive = datetime.datetime(2025, 1, 1, 8, 0)
    assert utils.to_iso(naive).endswith("+00:00")
    cet = datetime.timezone(datetime.timedelta(hours=1))
    ts = utils.from_iso("2025-01-01T09:00:00+01:00")
    assert ts == datetime.datetime(2025, 1, 1, 9, 0, tzinfo=cet)
    assert ts.utcoffset() == datetime.timedelta(0)
    assert utils.from_iso("") is None
