import pytest
from pydantic import ValidationError

from ipam_reconciler.models.schemas import DeviceDescriptor, PoolSummary


class TestDeviceDescriptorFromRaw:
    def test_metadata_wins_over_top_level(self):
        descriptor = DeviceDescriptor.from_raw({
            "name": "SW-MAIN-01",
            "template_id": 3,
            "metadata": {"template_id": "12", "vlan_id": "100", "ip_address": "10.0.0.5"},
        })
        assert descriptor.template_id == 12
        assert descriptor.vlan_id == 100
        assert descriptor.ip_address == "10.0.0.5"

    def test_top_level_is_the_fallback(self):
        descriptor = DeviceDescriptor.from_raw({
            "name": "RTR-CORE-01",
            "template_id": 4,
            "pool_id": 7,
            "metadata": {"template_id": ""},
        })
        assert descriptor.template_id == 4
        assert descriptor.pool_id == 7

    def test_empty_strings_become_none(self):
        descriptor = DeviceDescriptor.from_raw({"name": "FW-EDGE-01", "ip_address": "", "vlan_id": ""})
        assert descriptor.ip_address is None
        assert descriptor.vlan_id is None
        assert descriptor.template_id is None

    def test_name_from_metadata(self):
        descriptor = DeviceDescriptor.from_raw({"metadata": {"device_name": "SRV-APP-01"}})
        assert descriptor.name == "SRV-APP-01"

    def test_flat_geometry_and_numeric_cell_id(self):
        descriptor = DeviceDescriptor.from_raw({"name": "SW-A-1", "cell_id": 5, "x": 10, "y": 20.5})
        assert descriptor.cell_id == "5"
        assert descriptor.geometry.x == 10
        assert descriptor.geometry.y == 20.5
        assert descriptor.geometry.width is None

    def test_null_geometry_falls_back_to_flat_fields(self):
        descriptor = DeviceDescriptor.from_raw({"name": "SW-A-1", "geometry": None, "x": 40, "y": 60})
        assert descriptor.geometry.x == 40
        assert descriptor.geometry.y == 60
        assert descriptor.geometry.height is None

    def test_descriptor_passes_through(self):
        descriptor = DeviceDescriptor(name="SW-A-1")
        assert DeviceDescriptor.from_raw(descriptor) is descriptor

    def test_missing_name_is_invalid(self):
        with pytest.raises(ValidationError):
            DeviceDescriptor.from_raw({"template_id": 1})

    def test_non_numeric_template_is_invalid(self):
        with pytest.raises(ValidationError):
            DeviceDescriptor.from_raw({"name": "SW-A-1", "metadata": {"template_id": "abc"}})

    def test_flattened_fields_are_not_model_fields(self):
        assert "FLATTENED_FIELDS" not in DeviceDescriptor.model_fields


class TestPoolSummary:
    def test_serializes_counts_separately(self):
        summary = PoolSummary(
            external_id=7, prefix="10.0.0.0/24", family=4,
            total_hosts=254, assigned_count=3, reserved_count=5
        )
        data = summary.model_dump()
        assert data["assigned_count"] == 3
        assert data["reserved_count"] == 5
        assert data["is_pool"] is False
