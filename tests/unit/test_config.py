"""
Unit tests for the configuration manager and the entry loaders.
"""
import json

import pytest
import yaml

from roadie_guard.core.config import ConfigurationManager
from roadie_guard.core.config_loader import (
    load_emergency_contacts, load_geofence_zones, load_trigger_phrases, validate_entry
)
from roadie_guard.core.exceptions import ConfigurationError
from roadie_guard.models import ContactTier, Language, NotifyVia, Protocol, TriggerKind, ZoneKind
from roadie_guard.services.emergency import SOSStateMachine

from tests.base import BaseTestCase


class TestConfigurationManager(BaseTestCase):

    def write_yaml(self, directory, name, data):
        path = directory / name
        path.write_text(yaml.safe_dump(data), encoding="utf-8")
        return path

    def test_defaults(self, temp_dir):
        manager = ConfigurationManager(str(temp_dir))
        manager.load_config()
        assert manager.get("aggregator.dedup_window_ms") == 2000
        assert manager.get("escalation.secondary_delay_seconds") == 30
        assert manager.get("escalation.max_retries") == 1
        assert manager.get("matcher.threshold") == 0.2
        machine = SOSStateMachine(manager.get("sos"))
        assert machine.countdown_for(TriggerKind.FIRE) == 10
        assert machine.countdown_for(TriggerKind.SILENT) == 0

    def test_layer_priority(self, temp_dir, monkeypatch):
        self.write_yaml(temp_dir, "default.yaml", {"escalation": {"secondary_delay_seconds": 45}})
        self.write_yaml(temp_dir, "config.yaml", {"escalation": {"secondary_delay_seconds": 50,
                                                                 "max_retries": 2}})
        manager = ConfigurationManager(str(temp_dir))
        manager.load_config()
        assert manager.get("escalation.secondary_delay_seconds") == 50
        assert manager.get("escalation.max_retries") == 2

        monkeypatch.setenv("ROADIE_SECONDARY_DELAY", "12.5")
        manager = ConfigurationManager(str(temp_dir))
        manager.load_config()
        assert manager.get("escalation.secondary_delay_seconds") == 12.5

        manager = ConfigurationManager(str(temp_dir), overrides={"escalation": {"secondary_delay_seconds": 1}})
        manager.load_config()
        assert manager.get("escalation.secondary_delay_seconds") == 1
        # Untouched keys of a merged section survive
        assert manager.get("escalation.location_share_interval_seconds") == 60

    def test_environment_types(self, temp_dir, monkeypatch):
        monkeypatch.setenv("ROADIE_DIAL_COUNTRY", "UK")
        monkeypatch.setenv("ROADIE_AUTO_EXPIRE_MINUTES", "15")
        monkeypatch.setenv("ROADIE_LOG_LEVEL", "DEBUG")
        manager = ConfigurationManager(str(temp_dir))
        manager.load_config()
        assert manager.get("dial.country") == "UK"
        assert manager.get("sos.auto_expire_minutes") == 15
        assert manager.get("logging.level") == "DEBUG"

    def test_skip_countdown_wins(self, temp_dir):
        manager = ConfigurationManager(str(temp_dir), overrides={"sos": {"skip_countdown": ["medical"]}})
        manager.load_config()
        machine = SOSStateMachine(manager.get("sos"))
        assert machine.countdown_for(TriggerKind.MEDICAL) == 0
        assert machine.countdown_for(TriggerKind.GENERAL) == 5

    @pytest.mark.parametrize("overrides", [
        {"matcher": {"threshold": 0}},
        {"matcher": {"threshold": 1.5}},
        {"sos": {"countdown_seconds": {"general": -1}}},
        {"sos": {"countdown_seconds": {"tsunami": 5}}},
        {"sos": {"skip_countdown": ["tsunami"]}},
        {"escalation": {"max_retries": -1}},
        {"escalation": {"secondary_delay_seconds": "soon"}},
        {"aggregator": {"dedup_window_ms": -5}},
        {"logging": {"level": "LOUD"}},
        {"escalation": None},
    ])
    def test_invalid_values_rejected(self, temp_dir, overrides):
        manager = ConfigurationManager(str(temp_dir), overrides=overrides)
        with pytest.raises(ConfigurationError):
            manager.load_config()

    def test_unparsable_file_rejected(self, temp_dir):
        (temp_dir / "config.yaml").write_text("escalation: [unclosed", encoding="utf-8")
        manager = ConfigurationManager(str(temp_dir))
        with pytest.raises(ConfigurationError):
            manager.load_config()

    def test_set_and_watch(self, temp_dir):
        manager = ConfigurationManager(str(temp_dir))
        manager.load_config()
        seen = []
        manager.watch("dial.country", lambda key, value: seen.append((key, value)))
        manager.set("dial.country", "EU")
        assert manager.get("dial.country") == "EU"
        assert seen == [("dial.country", "EU")]

    def test_get_missing_key(self, temp_dir):
        manager = ConfigurationManager(str(temp_dir))
        manager.load_config()
        assert manager.get("escalation.nope", "fallback") == "fallback"
        assert manager.get("dial.country.deeper") is None

    def test_export_roundtrip(self, temp_dir):
        manager = ConfigurationManager(str(temp_dir))
        manager.load_config()

        yaml_path = temp_dir / "exported.yaml"
        manager.export_config(str(yaml_path))
        assert yaml.safe_load(yaml_path.read_text(encoding="utf-8"))["dial"]["country"] == "US"

        json_path = temp_dir / "exported.json"
        manager.export_config(str(json_path))
        assert json.loads(json_path.read_text(encoding="utf-8"))["escalation"]["max_retries"] == 1

        with pytest.raises(ConfigurationError):
            manager.export_config(str(temp_dir / "exported.txt"))

    def test_json_config_file(self):
        path = self.create_temp_file(json.dumps({"dial": {"country": "EU"}}), suffix=".json")
        manager = ConfigurationManager(str(path.parent))
        assert manager._load_from_file(str(path)) == {"dial": {"country": "EU"}}


class TestEntryLoaders:

    def test_phrases(self):
        phrases = load_trigger_phrases([
            {"phrase": "help", "language": "english", "protocol": "sos"},
            {"phrase": "ayuda", "language": "spanish", "protocol": "location-only"},
            {"phrase": "hilfe", "language": "klingon"},
        ])
        assert [p.protocol for p in phrases] == [Protocol.SOS, Protocol.LOCATION_ONLY, Protocol.SOS]
        assert phrases[2].language == Language.OTHER

    @pytest.mark.parametrize("entry", [
        {"phrase": ""},
        {"phrase": "   "},
        {"phrase": "ok", "protocol": "shout"},
        {"language": "english"},
        "help",
    ])
    def test_invalid_phrase_rejects_whole_catalog(self, entry):
        with pytest.raises(ConfigurationError) as exc_info:
            load_trigger_phrases([{"phrase": "fine"}, entry])
        assert exc_info.value.details["errors"]

    def test_zones(self):
        zones = load_geofence_zones([
            {"id": "home", "name": "Home", "lat": 37.77, "lon": -122.42, "radius_meters": 150, "kind": "home"},
            {"name": "Alley", "lat": 37.78, "lon": -122.41, "radius_meters": 40, "kind": "danger",
             "notify": False},
        ])
        assert zones[0].id == "home"
        assert zones[0].kind == ZoneKind.HOME
        assert zones[1].kind == ZoneKind.DANGER
        assert zones[1].notify is False
        assert zones[1].id

    @pytest.mark.parametrize("entry", [
        {"name": "x", "lat": 91, "lon": 0, "radius_meters": 10},
        {"name": "x", "lat": 0, "lon": 0, "radius_meters": 0},
        {"name": "x", "lat": 0, "lon": 0, "radius_meters": 10, "kind": "lava"},
        {"name": "x", "lat": "north", "lon": 0, "radius_meters": 10},
    ])
    def test_invalid_zones(self, entry):
        with pytest.raises(ConfigurationError):
            load_geofence_zones([entry])

    def test_duplicate_zone_ids(self):
        entry = {"id": "z", "name": "x", "lat": 0, "lon": 0, "radius_meters": 10}
        with pytest.raises(ConfigurationError):
            load_geofence_zones([entry, dict(entry)])

    def test_contacts(self):
        contacts = load_emergency_contacts([
            {"id": 7, "name": "Sam", "phone": "+15550007", "tier": "secondary",
             "notify_via": "both", "can_see_medical_info": True, "priority": 3},
        ])
        contact = contacts[0]
        assert contact.id == "7"
        assert contact.tier == ContactTier.SECONDARY
        assert contact.notify_via == NotifyVia.BOTH
        assert contact.can_see_medical_info is True
        assert contact.priority == 3

    def test_contact_validation(self):
        assert validate_entry("contact", {"id": "a", "name": "A", "phone": "1"}) == []
        errors = validate_entry("contact", {"id": "a", "name": "A", "phone": "1", "tier": "tertiary"})
        assert errors and errors[0].startswith("tier")

    def test_duplicate_contact_ids(self):
        entry = {"id": "a", "name": "A", "phone": "1"}
        with pytest.raises(ConfigurationError):
            load_emergency_contacts([entry, entry])

    def test_non_list_rejected(self):
        with pytest.raises(ConfigurationError):
            load_emergency_contacts({"id": "a"})
        assert load_emergency_contacts(None) == []
