import math

from timer_app.timer.validation import is_valid_duration, is_valid_loop_count, validate_session_name


def test_duration_validation():
    assert is_valid_duration(1)
    assert is_valid_duration(0.5)
    for bad in (0, -5, math.nan, math.inf, -math.inf, "5", None, True, 10**400, -(10**400)):
        assert not is_valid_duration(bad)


def test_loop_count_validation():
    assert is_valid_loop_count(None)
    assert is_valid_loop_count(3)
    assert is_valid_loop_count(3.0)
    for bad in (0, -1, 2.5, math.nan, math.inf, False, 10**400):
        assert not is_valid_loop_count(bad)


def test_session_name_validation():
    assert validate_session_name(None) is None
    assert validate_session_name("   ") is None
    assert validate_session_name("  Focus  ") == "Focus"
    assert validate_session_name("a" * 51) == "a" * 50
