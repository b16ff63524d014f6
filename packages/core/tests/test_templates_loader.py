"""Tests for the payment schedule template YAML loader."""

from datetime import UTC, datetime
from decimal import Decimal
from uuid import uuid4

import pytest

from edubill.config.templates_loader import load_schedule_templates
from edubill.schedules import Frequency, template_from_dict


def _write(tmp_path, text):
    path = tmp_path / "templates.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadScheduleTemplates:
    """Tests for load_schedule_templates."""

    def test_loads_and_normalizes(self, tmp_path):
        account_id = uuid4()
        agency_id = uuid4()
        path = _write(
            tmp_path,
            f"""
templates:
  - account_id: {account_id}
    agency_id: {agency_id}
    amount: 1250.50
    start_date: 2025-09-01
    frequency: Quarterly
    occurrences: 4
    escalation_percent: 3
    description: Autumn intake tuition
""",
        )

        [entry] = load_schedule_templates(path)

        assert entry["account_id"] == str(account_id)
        assert entry["agency_id"] == str(agency_id)
        assert entry["amount"] == Decimal("1250.5")
        assert entry["start_date"] == datetime(2025, 9, 1, tzinfo=UTC)
        assert entry["frequency"] == "quarterly"
        assert entry["interval"] == 1
        assert entry["end_date"] is None
        assert entry["escalation_percent"] == Decimal("3")

    def test_entries_build_templates(self, tmp_path):
        path = _write(
            tmp_path,
            f"""
templates:
  - account_id: {uuid4()}
    amount: "99.00"
    start_date: "2025-01-15T08:30:00+00:00"
    frequency: weekly
    interval: 2
    end_date: 2025-06-30
""",
        )

        template = template_from_dict(load_schedule_templates(path)[0])

        assert template.frequency is Frequency.WEEKLY
        assert template.interval == 2
        assert template.start_date == datetime(2025, 1, 15, 8, 30, tzinfo=UTC)
        assert template.end_date == datetime(2025, 6, 30, tzinfo=UTC)

    def test_empty_file(self, tmp_path):
        assert load_schedule_templates(_write(tmp_path, "")) == []

    def test_missing_required_keys(self, tmp_path):
        path = _write(tmp_path, "templates:\n  - amount: 10\n")

        with pytest.raises(ValueError, match=r"templates\[0\] missing account_id/start_date"):
            load_schedule_templates(path)

    def test_unknown_frequency(self, tmp_path):
        path = _write(
            tmp_path,
            f"templates:\n  - account_id: {uuid4()}\n    amount: 10\n"
            "    start_date: 2025-01-01\n    frequency: fortnightly\n",
        )

        with pytest.raises(ValueError, match="unknown frequency"):
            load_schedule_templates(path)

    def test_invalid_amount(self, tmp_path):
        path = _write(
            tmp_path,
            f"templates:\n  - account_id: {uuid4()}\n    amount: lots\n    start_date: 2025-01-01\n",
        )

        with pytest.raises(ValueError, match="invalid amount"):
            load_schedule_templates(path)

    def test_non_integer_interval(self, tmp_path):
        path = _write(
            tmp_path,
            f"templates:\n  - account_id: {uuid4()}\n    amount: 10\n"
            "    start_date: 2025-01-01\n    interval: monthly\n",
        )

        with pytest.raises(ValueError, match="interval must be an integer"):
            load_schedule_templates(path)

    def test_templates_must_be_a_list(self, tmp_path):
        with pytest.raises(ValueError, match="templates must be a list"):
            load_schedule_templates(_write(tmp_path, "templates:\n  key: value\n"))

    def test_invalid_date(self, tmp_path):
        path = _write(
            tmp_path,
            f"templates:\n  - account_id: {uuid4()}\n    amount: 10\n    start_date: soon\n",
        )

        with pytest.raises(ValueError, match="invalid date"):
            load_schedule_templates(path)
