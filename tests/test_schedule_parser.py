"""
Tests for chat schedule command parsing (times are read as CST, UTC-6).
"""

import pytest

from insider_trader.utils.schedule_parser import parse_schedule_command


class TestParseScheduleCommand:
    @pytest.mark.parametrize("text,cron,label", [
        ("schedule 6:30 PM weekdays", "30 0 * * 2-6", "6:30 PM CST weekdays"),
        ("schedule 9 AM daily", "0 15 * * *", "9:00 AM CST daily"),
        ("schedule 18:30 weekdays", "30 0 * * 2-6", "6:30 PM CST weekdays"),
        ("schedule 8:15 am mon-fri", "15 14 * * 1-5", "8:15 AM CST weekdays"),
        ("schedule 12 pm", "0 18 * * *", "12:00 PM CST daily"),
        ("schedule 12 AM workdays", "0 6 * * 1-5", "12:00 AM CST weekdays"),
        ("schedule 5:36 PM", "36 23 * * *", "5:36 PM CST daily"),
    ])
    def test_parses(self, text, cron, label):
        assert parse_schedule_command(text) == (cron, label)

    @pytest.mark.parametrize("text", ["schedule", "schedule tomorrow", "schedule 25:00", "schedule 13 PM"])
    def test_unparseable(self, text):
        assert parse_schedule_command(text) is None
