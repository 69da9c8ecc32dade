import asyncio
import json
from unittest.mock import Mock, patch

import pynetbox
import pytest
import requests
from requests.adapters import HTTPAdapter

from ipam_reconciler.database.netbox_client import (
    NetBoxRegistryClient, TimeoutHTTPAdapter, create_netbox_api, record_to_dict
)
from ipam_reconciler.utils.error_handlers import ExternalRegistryError


def request_error(status_code, body):
    req = Mock(status_code=status_code, reason="Bad Request", url="http://netbox.test:8080/api/dcim/devices/")
    req.json.return_value = body
    req.text = json.dumps(body)
    return pynetbox.RequestError(req)


@pytest.fixture
def api():
    return Mock()


@pytest.fixture
def client(api):
    return NetBoxRegistryClient(api=api)


class TestReads:
    def test_full_collection_uses_all(self, client, api):
        api.dcim.sites.all.return_value = [{"id": 1, "name": "HQ"}]

        assert asyncio.run(client.list_sites()) == [{"id": 1, "name": "HQ"}]
        api.dcim.sites.filter.assert_not_called()

    def test_filters_use_filter(self, client, api):
        api.ipam.ip_addresses.filter.return_value = [{"id": 31, "address": "10.0.0.2/24"}]

        result = asyncio.run(client.list_addresses(parent="10.0.0.0/24"))

        assert result[0]["id"] == 31
        api.ipam.ip_addresses.filter.assert_called_once_with(parent="10.0.0.0/24")

    def test_prefixes_by_site(self, client, api):
        api.ipam.prefixes.filter.return_value = []

        asyncio.run(client.list_prefixes(site_id=3))

        api.ipam.prefixes.filter.assert_called_once_with(site_id=3)

    def test_get_device_by_name(self, client, api):
        api.dcim.devices.filter.return_value = []
        assert asyncio.run(client.get_device_by_name("SW-MAIN-01")) is None

        api.dcim.devices.filter.return_value = [{"id": 42, "name": "SW-MAIN-01"}]
        assert asyncio.run(client.get_device_by_name("SW-MAIN-01"))["id"] == 42

    def test_status(self, client, api):
        api.status.return_value = {"netbox-version": "4.1.3"}
        assert asyncio.run(client.status())["netbox-version"] == "4.1.3"


class TestWrites:
    def test_create_device(self, client, api):
        api.dcim.devices.create.return_value = {"id": 42, "name": "SW-MAIN-01"}

        device = asyncio.run(client.create_device({"name": "SW-MAIN-01", "device_type": 3}))

        assert device["id"] == 42
        api.dcim.devices.create.assert_called_once_with({"name": "SW-MAIN-01", "device_type": 3})

    def test_request_error_is_translated(self, client, api):
        api.dcim.devices.create.side_effect = request_error(
            400, {"name": ["Device name must be unique per site."]}
        )

        with pytest.raises(ExternalRegistryError) as exc_info:
            asyncio.run(client.create_device({"name": "SW-MAIN-01"}))

        error = exc_info.value
        assert error.status_code == 400
        assert error.detail == {"name": ["Device name must be unique per site."]}
        assert error.is_duplicate_name()
        assert not error.is_duplicate_address()
        assert isinstance(error.original_error, pynetbox.RequestError)

    def test_duplicate_address_error(self, client, api):
        api.ipam.ip_addresses.create.side_effect = request_error(
            400, {"address": ["Duplicate IP address found in global table: 10.0.0.5/32"]}
        )

        with pytest.raises(ExternalRegistryError) as exc_info:
            asyncio.run(client.create_address({"address": "10.0.0.5/32"}))

        assert exc_info.value.is_duplicate_address()

    def test_transport_errors_pass_through(self, client, api):
        api.dcim.interfaces.create.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(requests.exceptions.ConnectionError):
            asyncio.run(client.create_interface({"device": 42, "name": "Management"}))

    def test_update_patches_existing_record(self, client, api):
        record = {"id": 77, "address": "10.0.0.5/32", "status": "reserved"}
        api.ipam.ip_addresses.get.return_value = record

        updated = asyncio.run(client.update_address(77, {"status": "active"}))

        assert updated["status"] == "active"
        api.ipam.ip_addresses.get.assert_called_once_with(77)

    def test_update_missing_record(self, client, api):
        api.dcim.devices.get.return_value = None

        with pytest.raises(ExternalRegistryError) as exc_info:
            asyncio.run(client.update_device(42, {"primary_ip4": 77}))

        assert exc_info.value.status_code == 404

    def test_create_cable(self, client, api):
        api.dcim.cables.create.return_value = {"id": 9}

        assert asyncio.run(client.create_cable({"a_terminations": [], "b_terminations": []}))["id"] == 9


class TestApiSetup:
    def test_session_settings(self):
        api = create_netbox_api("http://netbox.test:8080", "token", ssl_verify=False, timeout=7)

        assert api.http_session.verify is False
        adapter = api.http_session.get_adapter("https://netbox.test/api/")
        assert isinstance(adapter, TimeoutHTTPAdapter)
        assert adapter.timeout == 7

    def test_adapter_applies_default_timeout(self):
        adapter = TimeoutHTTPAdapter(timeout=3)
        with patch.object(HTTPAdapter, "send", return_value="response") as send:
            adapter.send(Mock())
            adapter.send(Mock(), timeout=10)

        assert send.call_args_list[0].kwargs["timeout"] == 3
        assert send.call_args_list[1].kwargs["timeout"] == 10

    def test_record_to_dict(self):
        assert record_to_dict(None) is None
        assert record_to_dict({"id": 1}) == {"id": 1}
