"""
Tests for field map lookups and form version resolution
"""

import json

import pytest

from jobtracker.errors import FieldMapError, UnknownFormType
from jobtracker.services.field_dictionary import FieldDictionary, PART_LOGICAL_FIELDS
from jobtracker.services.form_versions import FormRegistry, MAX_FORM_HISTORY, PART_NAME_KEY, SERIAL_KEY


class TestFormRegistry:

    def test_form_type_lookup_covers_history(self, registry):
        assert registry.form_type_for("5716092") == "service"
        assert registry.form_type_for(5695685) == "service"
        assert registry.form_type_for("5640587") == "pickup"
        assert registry.form_type_for("5657146") == "delivery"
        assert registry.form_type_for("1") is None

    def test_require_form_type_raises(self, registry):
        with pytest.raises(UnknownFormType):
            registry.require_form_type("424242")

    def test_group_key_encoding(self, registry):
        assert registry.group_key_encoding("5695685") == PART_NAME_KEY
        assert registry.group_key_encoding("5716092") == SERIAL_KEY

    def test_remap_keeps_old_ids_acceptable(self):
        reg = FormRegistry()
        reg.remap("service", "5800000")
        assert reg.current_form_id("service") == "5800000"
        assert reg.all_form_ids("service")[:3] == ["5800000", "5716092", "5695685"]
        assert reg.form_type_for("5716092") == "service"

    def test_remap_history_is_bounded(self):
        reg = FormRegistry()
        for n in range(MAX_FORM_HISTORY + 5):
            reg.remap("pickup", str(6000000 + n))
        assert len(reg.all_form_ids("pickup")) == MAX_FORM_HISTORY + 1


class TestFieldDictionary:

    def test_resolves_ids_in_requested_version(self, dictionary):
        assert dictionary.field_id("5716092", "job_id") == 736551901
        assert dictionary.field_id("5716092", "ecs_serial") == 737545295
        assert dictionary.field_id("5657148", "item_count") == 735100009
        assert dictionary.field_id("5714828", "driver_instructions") == 737100004

    def test_gps_label_alternatives(self, dictionary):
        assert dictionary.field_id("5716092", "gps") == 714491454
        assert dictionary.field_id("5657148", "gps") == 735100011

    def test_falls_back_to_other_version_of_same_form(self, dictionary):
        # the old pickup form never had an item count field
        assert dictionary.field_id("5640587", "item_count") == 735100009
        # nor did the old service form have a failed reason
        assert dictionary.field_id("5695685", "failed_reason") == 737545283

    def test_unknown_field_is_none(self, dictionary):
        assert dictionary.field_id("5716092", "order_number") is None
        assert dictionary.field_id("999", "job_id") is None

    def test_reverse_lookup(self, dictionary):
        assert dictionary.logical_name("5716092", 737545168) == "pass_or_fail"
        assert dictionary.logical_name("5716092", "737545282") == "repairs_performed"
        assert dictionary.logical_name("5716092", "nope") is None

    def test_parts_field_ids_complete_for_service_forms(self, dictionary):
        for form_id in ("5716092", "5695685"):
            ids = dictionary.parts_field_ids(form_id)
            assert set(ids) == set(PART_LOGICAL_FIELDS)

    def test_parts_field_ids_missing_fields_raise(self, tmp_path, registry):
        (tmp_path / "field_map_5716092.json").write_text(json.dumps({
            "form_id": "5716092",
            "entries": [{"id": 1, "label": "Job ID"}, {"id": 2, "label": "ECS Serial Number"}],
        }))
        d = FieldDictionary(map_dir=str(tmp_path), registry=registry)
        with pytest.raises(FieldMapError) as exc:
            d.parts_field_ids("5716092")
        assert "Did the Part Pass or Fail?" in exc.value.details["missing"]

    def test_invalid_map_structure(self, tmp_path, registry):
        (tmp_path / "field_map_5716092.json").write_text(json.dumps({"fields": []}))
        d = FieldDictionary(map_dir=str(tmp_path), registry=registry)
        with pytest.raises(FieldMapError):
            d.load("5716092")

    def test_missing_map_is_none(self, tmp_path, registry):
        d = FieldDictionary(map_dir=str(tmp_path), registry=registry)
        assert d.load("5716092") is None
        with pytest.raises(FieldMapError):
            d.label_to_id("5716092")

    def test_label_to_id(self, dictionary):
        labels = dictionary.label_to_id("5714828")
        assert labels["Order Number 5"] == 737100009
