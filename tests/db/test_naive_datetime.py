from datetime import datetime, timedelta, timezone

from pydantic import BaseModel
from sqlmodel_history.db.naive_datetime import NaiveDatetime


def test_naive_datetime_strips_timezone():
    """Timezone-aware datetimes lose their tzinfo."""
    aware_dt = datetime(2023, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
    naive_dt = NaiveDatetime(aware_dt)

    assert naive_dt.tzinfo is None
    assert (naive_dt.year, naive_dt.month, naive_dt.day, naive_dt.hour) == (2023, 1, 1, 12)


def test_naive_datetime_converts_non_utc_timezone():
    """Non-UTC datetimes are converted to naive UTC."""
    est = timezone(timedelta(hours=-5))
    naive_dt = NaiveDatetime(datetime(2023, 1, 1, 12, 0, 0, tzinfo=est))

    assert naive_dt.tzinfo is None
    assert naive_dt.hour == 17


def test_naive_datetime_preserves_naive():
    original_naive = datetime(2023, 1, 1, 12, 0, 0, 250)
    assert NaiveDatetime(original_naive) == original_naive


def test_naive_datetime_normal_constructor():
    naive_dt = NaiveDatetime(2023, 1, 1, 12, 0, 0)
    assert naive_dt == datetime(2023, 1, 1, 12, 0, 0)


def test_naive_datetime_now_is_naive_utc():
    before = datetime.now(timezone.utc).replace(tzinfo=None)
    naive_now = NaiveDatetime.now()
    after = datetime.now(timezone.utc).replace(tzinfo=None)

    assert naive_now.tzinfo is None
    assert before <= naive_now <= after


def test_naive_datetime_in_pydantic_model():
    class Stamp(BaseModel):
        at: NaiveDatetime

    stamp = Stamp(at=datetime(2023, 6, 1, 8, 30, tzinfo=timezone(timedelta(hours=2))))

    assert stamp.at.tzinfo is None
    assert stamp.at.hour == 6


def test_normalize_treats_naive_input_as_utc():
    value = datetime(2023, 3, 4, 5, 6, 7, 8)

    normalized = NaiveDatetime.normalize(value)

    assert isinstance(normalized, NaiveDatetime)
    assert normalized == value


def test_normalized_bounds_compare_with_capture_times():
    captured = NaiveDatetime.now()
    same_instant_elsewhere = captured.replace(tzinfo=timezone.utc).astimezone(timezone(timedelta(hours=9)))

    assert NaiveDatetime(same_instant_elsewhere) == captured
