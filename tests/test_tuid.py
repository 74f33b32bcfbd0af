from datetime import datetime, timedelta, timezone

import pytest

from imagevault.utils import tuid


def test_new_id_shape():
    t = tuid.new_id()
    assert len(t) == tuid.TUID_LENGTH == 16
    assert tuid.is_valid(t)


def test_ids_strictly_increase():
    ids = [tuid.new_id() for _ in range(2000)]
    assert ids == sorted(ids)
    assert len(set(ids)) == len(ids)


def test_id_time_is_now():
    t = tuid.new_id()
    delta = abs(datetime.now(timezone.utc) - tuid.id_time(t))
    assert delta < timedelta(seconds=5)


@pytest.mark.parametrize("value", ["", "abc", "0" * 15, "0" * 17, "000000000000000-"])
def test_invalid_ids(value):
    assert not tuid.is_valid(value)
    with pytest.raises(ValueError):
        tuid.id_time(value)
