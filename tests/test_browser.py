# Tests for browser.py
# Created: 2026-10-04

from unittest.mock import MagicMock, patch

import pytest

from tokengate.browser import BrowserLauncher
from tokengate.errors import BrowserError, UnsupportedPlatformError

URL = "https://auth.example.com/authorize?client_id=x&state=y"


@pytest.fixture
def launcher():
    return BrowserLauncher()


@pytest.mark.parametrize(
    "system, expected",
    [
        ("Linux", ["xdg-open", URL]),
        ("Darwin", ["open", URL]),
        ("Windows", ["rundll32", "url.dll,FileProtocolHandler", URL]),
    ],
)
def test_dispatches_per_platform(launcher, system, expected):
    launcher._system = system
    with (
        patch("tokengate.browser.shutil.which", return_value="/usr/bin/x"),
        patch("tokengate.browser.subprocess.Popen") as mock_popen,
    ):
        launcher.open(URL)
    assert mock_popen.call_args.args[0] == expected


def test_unknown_platform(launcher):
    launcher._system = "Plan9"
    with patch("tokengate.browser.subprocess.Popen") as mock_popen:
        with pytest.raises(UnsupportedPlatformError, match="Plan9"):
            launcher.open(URL)
    mock_popen.assert_not_called()


def test_unsupported_platform_is_browser_error():
    assert issubclass(UnsupportedPlatformError, BrowserError)


def test_missing_opener(launcher):
    launcher._system = "Linux"
    with patch("tokengate.browser.shutil.which", return_value=None):
        with pytest.raises(BrowserError, match="xdg-open"):
            launcher.open(URL)


def test_launch_failure(launcher):
    launcher._system = "Linux"
    with (
        patch("tokengate.browser.shutil.which", return_value="/usr/bin/xdg-open"),
        patch("tokengate.browser.subprocess.Popen", side_effect=OSError("exec format error")),
    ):
        with pytest.raises(BrowserError) as exc_info:
            launcher.open(URL)
    assert exc_info.value.stage == "browser"
    assert isinstance(exc_info.value.cause, OSError)


def test_does_not_wait_for_browser(launcher):
    launcher._system = "Linux"
    proc = MagicMock()
    with (
        patch("tokengate.browser.shutil.which", return_value="/usr/bin/xdg-open"),
        patch("tokengate.browser.subprocess.Popen", return_value=proc),
    ):
        launcher.open(URL)
    proc.wait.assert_not_called()
