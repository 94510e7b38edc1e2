"""Tests for the SLA deadline policy and its YAML loader."""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from helpdesk.config import Priority, Settings
from helpdesk.core import ConfigurationException
from helpdesk.sla.domain import SLAPolicy
from helpdesk.sla.infrastructure import load_policy
from tests.factories import T0


class TestSLAPolicy:
    def test_default_high_deadline_is_one_minute(self):
        policy = SLAPolicy()
        assert policy.duration_for(Priority.HIGH) == timedelta(minutes=1)
        assert policy.deadline_for(T0, Priority.HIGH) == T0 + timedelta(minutes=1)

    @pytest.mark.parametrize("priority", [Priority.MEDIUM, Priority.LOW, "unknown"])
    def test_other_priorities_have_no_deadline(self, priority):
        policy = SLAPolicy()
        assert policy.duration_for(priority) is None
        assert policy.deadline_for(T0, priority) is None

    def test_naive_created_at_is_treated_as_utc(self):
        policy = SLAPolicy()
        naive = T0.replace(tzinfo=None)
        assert policy.deadline_for(naive, Priority.HIGH) == T0 + timedelta(minutes=1)

    def test_rejects_deadline_for_non_high_priority(self):
        with pytest.raises(ValidationError):
            SLAPolicy(deadlines_minutes={Priority.MEDIUM: 10})

    @pytest.mark.parametrize("minutes", [0, -5])
    def test_rejects_non_positive_duration(self, minutes):
        with pytest.raises(ValidationError):
            SLAPolicy(deadlines_minutes={Priority.HIGH: minutes})

    def test_from_settings(self):
        policy = SLAPolicy.from_settings(Settings(sla_high_priority_minutes=15))
        assert policy.duration_for(Priority.HIGH) == timedelta(minutes=15)

    def test_policy_is_immutable(self):
        policy = SLAPolicy()
        with pytest.raises(ValidationError):
            policy.deadlines_minutes = {Priority.HIGH: 5}


class TestLoadPolicy:
    def test_without_path_uses_settings(self):
        policy = load_policy(None, Settings(sla_high_priority_minutes=3))
        assert policy.duration_for(Priority.HIGH) == timedelta(minutes=3)

    def test_missing_file_falls_back_to_settings(self, tmp_path):
        policy = load_policy(tmp_path / "absent.yaml", Settings(sla_high_priority_minutes=2))
        assert policy.duration_for(Priority.HIGH) == timedelta(minutes=2)

    def test_reads_yaml_file(self, tmp_path):
        path = tmp_path / "sla.yaml"
        path.write_text("deadlines_minutes:\n  high: 30\n")

        policy = load_policy(path, Settings())

        assert policy.duration_for(Priority.HIGH) == timedelta(minutes=30)

    def test_empty_file_uses_default_policy(self, tmp_path):
        path = tmp_path / "sla.yaml"
        path.write_text("")

        policy = load_policy(path, Settings())

        assert policy.duration_for(Priority.HIGH) == timedelta(minutes=1)

    def test_invalid_policy_raises_configuration_error(self, tmp_path):
        path = tmp_path / "sla.yaml"
        path.write_text("deadlines_minutes:\n  low: 30\n")

        with pytest.raises(ConfigurationException):
            load_policy(path, Settings())

    def test_malformed_yaml_raises_configuration_error(self, tmp_path):
        path = tmp_path / "sla.yaml"
        path.write_text("deadlines_minutes: [high: 1\n")

        with pytest.raises(ConfigurationException):
            load_policy(path, Settings())

    def test_non_mapping_raises_configuration_error(self, tmp_path):
        path = tmp_path / "sla.yaml"
        path.write_text("- high\n- 1\n")

        with pytest.raises(ConfigurationException):
            load_policy(path, Settings())
