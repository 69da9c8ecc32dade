"""
Diagram Deployment Service

Pushes diagram devices into NetBox: device, management interface, address
claim and assignment, primary address, then the local mapping rows. Each
device is deployed independently; one failing device never stops the rest
of the diagram.
"""

import logging
from typing import Any, Dict, List, Optional, Union

from ..config.constants import (
    DEFAULT_DEVICE_ROLE_NAME, DEVICE_ROLE_NAMES, DeploymentStatus, ManagementInterface, NetBoxStatus
)
from ..database.mapping_store import DeploymentMappingStore
from ..database.netbox_client import NetBoxRegistryClient
from ..database.registry_cache import RegistryCacheStore
from ..models.schemas import DeviceDeploymentResult, DeviceDescriptor, DiagramDeploymentSummary
from ..utils.diagram_parser import extract_devices
from ..utils.error_handlers import ExternalRegistryError, MissingTemplate, NoDeviceRolesAvailable
from ..utils.logging_decorators import log_operation_timing
from ..utils.network_utils import host_cidr, parse_host_address
from .allocation_service import AllocationService

logger = logging.getLogger(__name__)


def role_name_for(device_type: Optional[str]) -> str:
    return DEVICE_ROLE_NAMES.get(device_type or "", DEFAULT_DEVICE_ROLE_NAME)


class DeploymentService:
    """Deploys diagram devices to NetBox"""

    def __init__(self, registry: NetBoxRegistryClient, cache: RegistryCacheStore,
                 allocations: AllocationService, mappings: DeploymentMappingStore):
        self.registry = registry
        self.cache = cache
        self.allocations = allocations
        self.mappings = mappings
        self._role_cache: Dict[str, Dict[str, Any]] = {}

    async def resolve_device_role(self, device_type: Optional[str]) -> Dict[str, Any]:
        """Find the NetBox role for a diagram device type

        Lookup order: in-process cache, cached device_roles table, NetBox.
        Falls back to the first NetBox role when no name matches; only exact
        matches are memoized.

        Raises:
            NoDeviceRolesAvailable: NetBox has no roles at all
        """
        role_name = role_name_for(device_type)
        if role_name in self._role_cache:
            return self._role_cache[role_name]

        cached = await self.cache.get_device_role_by_name(role_name)
        if cached:
            role = {"id": cached["external_id"], "name": cached["name"]}
            logger.info(f"Using cached device role: {role_name}")
        else:
            roles = await self.registry.list_device_roles()
            match = next((r for r in roles if r.get("name") == role_name), None)
            if match is None and not roles:
                raise NoDeviceRolesAvailable()
            if match is None:
                # Fallback is not memoized; a later sync may add the real role
                fallback = roles[0]
                logger.warning(f"Device role '{role_name}' not found, using default role: {fallback.get('name')}")
                return {"id": fallback["id"], "name": fallback.get("name")}
            role = {"id": match["id"], "name": match.get("name")}

        self._role_cache[role_name] = role
        return role

    async def _create_device(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            return await self.registry.create_device(payload)
        except ExternalRegistryError as e:
            if not e.is_duplicate_name():
                raise
            existing = await self.registry.get_device_by_name(payload["name"])
            if existing is None:
                raise
            logger.info(f"Device {payload['name']} already exists in NetBox (ID {existing['id']}), reusing it")
            return existing

    async def _create_management_interface(self, device_id: int, vlan_id: Optional[int]) -> Dict[str, Any]:
        payload = {
            "device": device_id,
            "name": ManagementInterface.NAME,
            "type": ManagementInterface.TYPE,
            "enabled": True,
        }
        if vlan_id:
            payload["untagged_vlan"] = int(vlan_id)
            payload["mode"] = ManagementInterface.MODE_ACCESS

        try:
            return await self.registry.create_interface(payload)
        except ExternalRegistryError as e:
            if e.status_code != 400:
                raise
            existing = await self.registry.list_interfaces(device_id=device_id, name=ManagementInterface.NAME)
            if not existing:
                raise
            logger.info(f"Interface {ManagementInterface.NAME} already exists on device {device_id}, reusing it")
            return existing[0]

    async def _assign_address(self, address: str, interface_id: int) -> Dict[str, Any]:
        payload = {
            "address": host_cidr(address),
            "assigned_object_type": ManagementInterface.ASSIGNED_OBJECT_TYPE,
            "assigned_object_id": interface_id,
            "status": NetBoxStatus.ACTIVE,
        }
        try:
            return await self.registry.create_address(payload)
        except ExternalRegistryError as e:
            if not e.is_duplicate_address():
                raise
            existing = await self.registry.list_addresses(address=address)
            if not existing:
                raise
            logger.info(f"IP {address} already exists in NetBox (ID {existing[0]['id']}), reassigning it")
            return await self.registry.update_address(existing[0]["id"], {
                "assigned_object_type": payload["assigned_object_type"],
                "assigned_object_id": payload["assigned_object_id"],
                "status": payload["status"],
            })

    async def _set_primary_address(self, device_id: int, address_id: int, address: str) -> None:
        field = "primary_ip4" if parse_host_address(address).version == 4 else "primary_ip6"
        try:
            await self.registry.update_device(device_id, {field: address_id})
        except Exception as e:
            logger.warning(f"⚠️  Could not set {field} on device {device_id}: {e}")

    async def _deploy(self, descriptor: DeviceDescriptor, site_id: int, diagram_id: str,
                      result: DeviceDeploymentResult) -> DeviceDeploymentResult:
        if descriptor.template_id is None:
            raise MissingTemplate(descriptor.name)

        role = await self.resolve_device_role(descriptor.device_type)

        # Claim locally first so a held address never leaves an orphan device in NetBox
        claim = None
        if descriptor.ip_address:
            claim = await self.allocations.claim_for_device(
                descriptor.ip_address, descriptor.name,
                pool_id=descriptor.pool_id, vlan_id=descriptor.vlan_id
            )

        device = await self._create_device({
            "name": descriptor.name,
            "device_type": int(descriptor.template_id),
            "role": role["id"],
            "site": int(site_id),
            "status": NetBoxStatus.ACTIVE,
        })
        result.external_device_id = device["id"]

        if claim is not None:
            interface = await self._create_management_interface(device["id"], descriptor.vlan_id)
            result.external_interface_id = interface["id"]

            netbox_ip = await self._assign_address(claim.address, interface["id"])
            result.external_address_id = netbox_ip["id"]
            await self._set_primary_address(device["id"], netbox_ip["id"], claim.address)

        await self.mappings.upsert_deployment_mapping(
            diagram_id, descriptor.name, descriptor.model_dump(mode="json"), device["id"]
        )
        if descriptor.cell_id is not None:
            await self.mappings.upsert_device_diagram_mapping(device["id"], diagram_id, {
                "cell_id": descriptor.cell_id,
                **descriptor.geometry.model_dump(),
                "style": descriptor.style,
            })

        result.success = True
        logger.info(f"✅ Deployed {descriptor.name} -> NetBox device {device['id']}")
        return result

    @log_operation_timing("deploy_device", threshold_ms=5000)
    async def deploy_device(self, descriptor: Union[DeviceDescriptor, Dict[str, Any]], site_id: int,
                            diagram_id: str) -> DeviceDeploymentResult:
        """Deploy one device; errors propagate to the caller"""
        descriptor = DeviceDescriptor.from_raw(descriptor)
        result = DeviceDeploymentResult(device_name=descriptor.name)
        return await self._deploy(descriptor, site_id, diagram_id, result)

    @log_operation_timing("deploy_diagram", threshold_ms=30000)
    async def deploy_diagram(self, diagram_id: str, devices: List[Union[DeviceDescriptor, Dict[str, Any]]],
                             site_id: int) -> DiagramDeploymentSummary:
        """Deploy every device of a diagram, isolating per-device failures

        The diagram is marked deployed only when every device succeeds.
        """
        logger.info(f"Starting diagram deployment {diagram_id}: {len(devices)} devices")
        summary = DiagramDeploymentSummary(total=len(devices))

        for raw in devices:
            fallback_name = raw.name if isinstance(raw, DeviceDescriptor) else str((raw or {}).get("name") or "")
            result = DeviceDeploymentResult(device_name=fallback_name)
            try:
                descriptor = DeviceDescriptor.from_raw(raw)
                result.device_name = descriptor.name
                await self._deploy(descriptor, site_id, diagram_id, result)
                summary.succeeded += 1
            except Exception as e:
                result.success = False
                result.errors.append(str(e))
                summary.failed += 1
                logger.error(f"❌ Failed to deploy {result.device_name or '<unnamed>'}: {e}")
            summary.devices.append(result)

        logger.info(f"Deployment complete: {summary.succeeded}/{summary.total} succeeded")

        if summary.total and summary.failed == 0:
            await self.mappings.update_diagram_status(diagram_id, DeploymentStatus.DEPLOYED)
        return summary

    async def deploy_diagram_xml(self, diagram_id: str, diagram_xml: str, site_id: int) -> DiagramDeploymentSummary:
        """Extract devices from Draw.io XML and deploy them"""
        devices = list(extract_devices(diagram_xml))
        return await self.deploy_diagram(diagram_id, devices, site_id)
