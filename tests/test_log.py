import pytest

from xdputil.log import (
    LogLevel,
    get_log_level,
    increase_log_level,
    log_print,
    pr_debug,
    pr_info,
    pr_warn,
    set_log_level,
)


@pytest.fixture(autouse=True)
def _restore_level():
    old = set_log_level(LogLevel.INFO)
    yield
    set_log_level(old)


def test_info_level_prints_info_and_warn(capsys):
    pr_info("info message\n")
    pr_warn("warn message\n")
    assert capsys.readouterr().err == "info message\nwarn message\n"


def test_debug_suppressed_at_info(capsys):
    assert pr_debug("hidden\n") == 0
    assert capsys.readouterr().err == ""


def test_debug_shown_after_increase(capsys):
    increase_log_level()
    pr_debug("shown\n")
    assert capsys.readouterr().err == "shown\n"


def test_log_print_indent(capsys):
    written = log_print(LogLevel.WARN, "msg", indent=2)
    assert capsys.readouterr().err == "  msg"
    assert written == len("msg")


def test_set_log_level_returns_previous():
    assert set_log_level(LogLevel.DEBUG) == LogLevel.INFO
    assert set_log_level(LogLevel.WARN) == LogLevel.DEBUG
    assert get_log_level() == LogLevel.WARN


def test_increase_caps_at_verbose():
    set_log_level(LogLevel.DEBUG)
    assert increase_log_level() == LogLevel.VERBOSE
    assert increase_log_level() == LogLevel.VERBOSE
    assert get_log_level() == LogLevel.VERBOSE


def test_warn_level_hides_info(capsys):
    set_log_level(LogLevel.WARN)
    pr_info("nothing\n")
    pr_warn("warned\n")
    assert capsys.readouterr().err == "warned\n"


def test_invalid_level_rejected():
    with pytest.raises(ValueError):
        set_log_level(42)
    assert get_log_level() == LogLevel.INFO