from typing import Any, Dict, List, Optional
import logging
import xml.etree.ElementTree as ET
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError

from ..models.schemas import (
    AllocationRecord, AllocationRequest, CleanupResponse, DeviceDeployRequest,
    DeviceDeploymentResult, DeviceDescriptor, DiagramDeploymentSummary, DiagramDeployRequest,
    EntitySyncResult, PoolAddressesResponse, PoolSummary, SyncResult, SyncStatus
)
from ..services.allocation_service import AllocationService
from ..services.deployment_service import DeploymentService
from ..services.sync_service import SyncService
from ..utils.error_handlers import handle_service_errors

logger = logging.getLogger(__name__)

router = APIRouter()


def get_allocation_service(request: Request) -> AllocationService:
    return request.app.state.allocation_service


def get_sync_service(request: Request) -> SyncService:
    return request.app.state.sync_service


def get_deployment_service(request: Request) -> DeploymentService:
    return request.app.state.deployment_service


# Pool Routes
@router.get("/pools", response_model=List[PoolSummary])
@handle_service_errors
async def list_pools(
    site_id: Optional[int] = None,
    pools_only: bool = False,
    service: AllocationService = Depends(get_allocation_service)
):
    """List cached prefixes with NetBox-assigned and ledger-claimed counts"""
    return await service.list_pools(site_id=site_id, pools_only=pools_only)


@router.get("/pools/{prefix_id}/addresses", response_model=PoolAddressesResponse)
@handle_service_errors
async def get_pool_addresses(
    prefix_id: int,
    limit: Optional[int] = None,
    service: AllocationService = Depends(get_allocation_service)
):
    """Enumerate a pool with occupancy as of the last NetBox address sync"""
    if limit is not None and limit < 0:
        raise HTTPException(status_code=400, detail="limit must be non-negative")
    return await service.list_pool_addresses(prefix_id, limit=limit)


# Allocation Routes
@router.get("/allocations", response_model=List[AllocationRecord])
@handle_service_errors
async def list_allocations(
    device_name: Optional[str] = None,
    service: AllocationService = Depends(get_allocation_service)
):
    """List allocation ledger records"""
    return await service.list_allocations(device_name)


@router.post("/allocations", response_model=AllocationRecord)
@handle_service_errors
async def allocate_address(
    body: AllocationRequest,
    service: AllocationService = Depends(get_allocation_service)
):
    """Claim a specific address for a device"""
    record = await service.allocate(body.ip_address, body.device_name, pool_id=body.pool_id, vlan_id=body.vlan_id)
    if record is None:
        raise HTTPException(status_code=409, detail=f"IP address {body.ip_address} is already allocated")
    return record


@router.post("/allocations/cleanup", response_model=CleanupResponse)
@handle_service_errors
async def cleanup_orphaned_allocations(
    max_age_hours: Optional[int] = None,
    service: AllocationService = Depends(get_allocation_service)
):
    """Release ledger claims that never materialized in NetBox"""
    released = await service.cleanup_orphaned_allocations(max_age_hours)
    return CleanupResponse(released_count=released)


@router.get("/allocations/{address}", response_model=AllocationRecord)
@handle_service_errors
async def get_allocation(
    address: str,
    service: AllocationService = Depends(get_allocation_service)
):
    """Get the ledger record for an address"""
    record = await service.get_allocation(address)
    if record is None:
        raise HTTPException(status_code=404, detail=f"IP address {address} is not allocated")
    return record


@router.delete("/allocations/{address}", response_model=AllocationRecord)
@handle_service_errors
async def release_address(
    address: str,
    service: AllocationService = Depends(get_allocation_service)
):
    """Release a claimed address"""
    record = await service.release(address)
    if record is None:
        raise HTTPException(status_code=404, detail=f"IP address {address} is not allocated")
    return record


# Sync Routes
@router.post("/sync", response_model=SyncResult)
@handle_service_errors
async def sync_all(service: SyncService = Depends(get_sync_service)):
    """Run a full NetBox sync"""
    return await service.sync_all()


@router.post("/sync/addresses", response_model=EntitySyncResult)
@handle_service_errors
async def sync_addresses(
    prefix_id: Optional[int] = None,
    service: SyncService = Depends(get_sync_service)
):
    """Re-sync IP addresses, optionally only those inside one cached prefix"""
    return await service.sync_addresses(prefix_id)


@router.get("/sync/status", response_model=List[SyncStatus])
@handle_service_errors
async def get_sync_status(service: SyncService = Depends(get_sync_service)):
    """Per-entity sync state"""
    return await service.get_sync_status()


# Cached Catalog Routes
@router.get("/sites")
@handle_service_errors
async def get_sites(service: SyncService = Depends(get_sync_service)) -> List[Dict[str, Any]]:
    """Sites from the reconciliation cache"""
    return await service.get_cached_sites()


@router.get("/vlans")
@handle_service_errors
async def get_vlans(
    site_id: Optional[int] = None,
    service: SyncService = Depends(get_sync_service)
) -> List[Dict[str, Any]]:
    """VLANs from the reconciliation cache"""
    return await service.get_cached_vlans(site_id)


@router.get("/device-types")
@handle_service_errors
async def get_device_types(service: SyncService = Depends(get_sync_service)) -> List[Dict[str, Any]]:
    """Device types (deployment templates) from the reconciliation cache"""
    return await service.get_cached_device_types()


@router.get("/device-roles")
@handle_service_errors
async def get_device_roles(service: SyncService = Depends(get_sync_service)) -> List[Dict[str, Any]]:
    """Device roles from the reconciliation cache"""
    return await service.get_cached_device_roles()


# Deployment Routes
@router.post("/diagrams/{diagram_id}/deploy", response_model=DiagramDeploymentSummary)
@handle_service_errors
async def deploy_diagram(
    diagram_id: str,
    body: DiagramDeployRequest,
    service: DeploymentService = Depends(get_deployment_service)
):
    """Deploy every device of a diagram to NetBox"""
    if body.diagram_xml:
        try:
            return await service.deploy_diagram_xml(diagram_id, body.diagram_xml, body.site_id)
        except (ValueError, ET.ParseError) as e:
            raise HTTPException(status_code=400, detail=f"Invalid diagram XML: {e}")
    if body.devices is not None:
        return await service.deploy_diagram(diagram_id, body.devices, body.site_id)
    raise HTTPException(status_code=400, detail="Either devices or diagram_xml is required")


@router.post("/devices/deploy", response_model=DeviceDeploymentResult)
@handle_service_errors
async def deploy_device(
    body: DeviceDeployRequest,
    service: DeploymentService = Depends(get_deployment_service)
):
    """Deploy a single device to NetBox"""
    try:
        descriptor = DeviceDescriptor.from_raw(body.device)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid device data: {e}")
    return await service.deploy_device(descriptor, body.site_id, body.diagram_id)


@router.get("/health")
@handle_service_errors
async def health_check(service: SyncService = Depends(get_sync_service)):
    """Health check endpoint"""
    return await service.health_check()
