"""
NetBox Data Converters

This module converts NetBox API records (plain dicts from the registry
client) into the row shape of the reconciliation cache tables.

These functions never make NetBox API calls; they are called in loops over
full collections during sync.
"""

import json
import logging
from typing import Any, Dict, Optional

from ..utils.network_utils import address_family, address_to_int, cidr_bounds, normalize_address

logger = logging.getLogger(__name__)

SCOPE_TYPE_SITE = "dcim.site"


def nested_get(record: Optional[Dict[str, Any]], *path: str, default: Any = None) -> Any:
    """Walk nested dicts, returning default on the first missing hop"""
    current = record
    for key in path:
        if not isinstance(current, dict):
            return default
        current = current.get(key)
        if current is None:
            return default
    return current


def choice_value(choice: Any, default: Any = None) -> Any:
    """NetBox choice fields come as {"value": ..., "label": ...}"""
    if choice is None:
        return default
    if isinstance(choice, dict):
        return choice.get("value", default)
    return choice


def _custom_fields(record: Dict[str, Any]) -> str:
    return json.dumps(record.get("custom_fields") or {})


def site_to_row(site: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "external_id": site["id"],
        "name": site.get("name"),
        "slug": site.get("slug"),
        "status": choice_value(site.get("status")),
        "description": site.get("description") or None,
        "facility": site.get("facility") or None,
        "time_zone": site.get("time_zone") or None,
        "physical_address": site.get("physical_address") or None,
        "latitude": site.get("latitude"),
        "longitude": site.get("longitude"),
        "custom_fields": _custom_fields(site),
    }


def device_type_to_row(device_type: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "external_id": device_type["id"],
        "manufacturer_name": nested_get(device_type, "manufacturer", "name"),
        "manufacturer_slug": nested_get(device_type, "manufacturer", "slug"),
        "model": device_type.get("model"),
        "slug": device_type.get("slug"),
        "part_number": device_type.get("part_number") or None,
        "u_height": device_type.get("u_height"),
        "is_full_depth": device_type.get("is_full_depth"),
        "description": device_type.get("description") or None,
        "front_image_url": device_type.get("front_image") or None,
        "rear_image_url": device_type.get("rear_image") or None,
        "custom_fields": _custom_fields(device_type),
    }


def device_role_to_row(role: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "external_id": role["id"],
        "name": role.get("name"),
        "slug": role.get("slug"),
        "color": role.get("color"),
        "vm_role": role.get("vm_role"),
        "description": role.get("description") or None,
        "custom_fields": _custom_fields(role),
    }


def prefix_site(prefix: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Site of a prefix: legacy `site` field, else a dcim.site scope"""
    site = prefix.get("site")
    if isinstance(site, dict):
        return site
    if prefix.get("scope_type") == SCOPE_TYPE_SITE:
        scope = prefix.get("scope")
        if isinstance(scope, dict):
            return scope
        if prefix.get("scope_id"):
            return {"id": prefix["scope_id"], "name": None}
    return None


def prefix_to_row(prefix: Dict[str, Any]) -> Dict[str, Any]:
    family, network_int, broadcast_int = cidr_bounds(prefix["prefix"])
    site = prefix_site(prefix)
    return {
        "external_id": prefix["id"],
        "prefix": prefix["prefix"],
        "family": family,
        "network_int": network_int,
        "broadcast_int": broadcast_int,
        "site_id": nested_get(site, "id"),
        "site_name": nested_get(site, "name"),
        "vlan_id": nested_get(prefix, "vlan", "id"),
        "status": choice_value(prefix.get("status")),
        "role_name": nested_get(prefix, "role", "name"),
        "is_pool": bool(prefix.get("is_pool")),
        "description": prefix.get("description") or None,
        "custom_fields": _custom_fields(prefix),
    }


def vlan_to_row(vlan: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "external_id": vlan["id"],
        "vid": vlan.get("vid"),
        "name": vlan.get("name"),
        "site_id": nested_get(vlan, "site", "id"),
        "site_name": nested_get(vlan, "site", "name"),
        "status": choice_value(vlan.get("status")),
        "role_name": nested_get(vlan, "role", "name"),
        "description": vlan.get("description") or None,
        "custom_fields": _custom_fields(vlan),
    }


def device_to_row(device: Dict[str, Any]) -> Dict[str, Any]:
    # NetBox 3.6+ renamed device_role to role
    role_name = nested_get(device, "role", "name") or nested_get(device, "device_role", "name")
    return {
        "external_id": device["id"],
        "name": device.get("name"),
        "device_type_name": nested_get(device, "device_type", "model"),
        "device_role_name": role_name,
        "site_id": nested_get(device, "site", "id"),
        "site_name": nested_get(device, "site", "name"),
        "status": choice_value(device.get("status"), "active"),
        "primary_ip4": nested_get(device, "primary_ip4", "address"),
        "primary_ip6": nested_get(device, "primary_ip6", "address"),
        "serial": device.get("serial") or None,
        "asset_tag": device.get("asset_tag") or None,
        "platform_name": nested_get(device, "platform", "name"),
        "rack_name": nested_get(device, "rack", "name"),
        "position": device.get("position"),
        "custom_fields": _custom_fields(device),
    }


def address_to_row(ip: Dict[str, Any]) -> Dict[str, Any]:
    address = normalize_address(ip["address"])
    return {
        "external_id": ip["id"],
        "address": address,
        "family": address_family(address),
        "address_int": address_to_int(address),
        "status": choice_value(ip.get("status"), "active"),
        "assigned_object_type": ip.get("assigned_object_type"),
        "assigned_object_id": ip.get("assigned_object_id"),
        "device_name": nested_get(ip, "assigned_object", "device", "name"),
        "interface_name": nested_get(ip, "assigned_object", "name"),
        "dns_name": ip.get("dns_name") or None,
        "description": ip.get("description") or None,
        "custom_fields": _custom_fields(ip),
    }
