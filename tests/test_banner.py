"""
Tests for the startup banner.
"""
import pytest

from utils import banner


@pytest.fixture
def no_git(monkeypatch):
    monkeypatch.setattr(banner, '_git', lambda *args: None)


class TestBuildDetails:
    def test_injected_build_values_win(self, monkeypatch, no_git):
        monkeypatch.setenv('BUILD_TIME', '2026-10-19 08:00:00 UTC')
        monkeypatch.setenv('GIT_HASH', '0123456789abcdef')

        assert banner.build_details() == [('Build Time', '2026-10-19 08:00:00 UTC'),
                                          ('Commit', '01234567')]

    def test_outside_a_checkout(self, monkeypatch, no_git):
        monkeypatch.delenv('BUILD_TIME', raising=False)
        monkeypatch.delenv('GIT_HASH', raising=False)

        details = dict(banner.build_details())
        assert details['Commit'] == 'unknown'
        assert details['Build Time'].endswith('UTC')
        assert 'Committed' not in details


class TestPrintStartupBanner:
    def test_printed_once(self, monkeypatch, capsys, no_git):
        monkeypatch.setattr(banner, '_banner_shown', False)

        banner.print_startup_banner()
        first = capsys.readouterr().out
        banner.print_startup_banner()

        assert 'Starting Ticket Feedback Portal' in first
        assert capsys.readouterr().out == ''
