from typing import Any, ClassVar, Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, Field


class Prefix(BaseModel):
    external_id: int = Field(..., description="NetBox prefix ID", examples=[7])
    prefix: str = Field(..., description="CIDR block", examples=["10.0.0.0/24"])
    family: int = Field(..., description="Address family (4 or 6)", examples=[4])
    site_id: Optional[int] = Field(default=None, description="NetBox site ID")
    site_name: Optional[str] = Field(default=None, description="Site name")
    vlan_id: Optional[int] = Field(default=None, description="NetBox VLAN ID")
    status: Optional[str] = Field(default=None, description="NetBox status", examples=["active"])
    role_name: Optional[str] = Field(default=None, description="NetBox prefix role")
    is_pool: bool = Field(default=False, description="All addresses in the prefix are usable")
    description: Optional[str] = Field(default=None)


class CachedAddress(BaseModel):
    external_id: int = Field(..., description="NetBox IP address ID")
    address: str = Field(..., description="Address without prefix length", examples=["10.0.0.5"])
    status: Optional[str] = Field(default=None)
    assigned_object_type: Optional[str] = Field(default=None, examples=["dcim.interface"])
    assigned_object_id: Optional[int] = Field(default=None)
    device_name: Optional[str] = Field(default=None, examples=["SW-MAIN-01"])
    interface_name: Optional[str] = Field(default=None, examples=["Management"])
    dns_name: Optional[str] = Field(default=None)


class AllocationRecord(BaseModel):
    address: str = Field(..., description="Allocated address, normalized", examples=["10.0.0.5"])
    subnet: Optional[str] = Field(default=None, description="Pool CIDR the address was claimed from", examples=["10.0.0.0/24"])
    vlan_id: Optional[int] = Field(default=None, examples=[100])
    allocation_type: str = Field(default="static", examples=["static"])
    device_name: Optional[str] = Field(default=None, examples=["SW-MAIN-01"])
    created_at: datetime = Field(..., description="Allocation timestamp")


class AllocationRequest(BaseModel):
    ip_address: str = Field(..., description="Address to claim, with or without prefix length", examples=["10.0.0.5"])
    device_name: str = Field(..., description="Device the address is claimed for", examples=["SW-MAIN-01"])
    pool_id: Optional[int] = Field(default=None, description="NetBox prefix ID of the pool", examples=[7])
    vlan_id: Optional[int] = Field(default=None, examples=[100])

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "ip_address": "10.0.0.5",
                    "device_name": "SW-MAIN-01",
                    "pool_id": 7,
                    "vlan_id": 100
                }
            ]
        }
    }


class PoolAddress(BaseModel):
    ip_address: str
    is_allocated: bool
    device_name: Optional[str] = None
    allocated_at: Optional[datetime] = None
    source: Optional[str] = Field(default=None, description="Where the occupancy came from", examples=["external"])


class PoolAddressesResponse(BaseModel):
    prefix: Prefix
    addresses: List[PoolAddress]
    occupancy_source: str = Field(
        default="external_registry",
        description="Occupancy reflects the NetBox state as of the last address sync; "
                    "local ledger reservations are not shown"
    )
    cache_synced_at: Optional[datetime] = Field(default=None, description="Last successful address sync")


class PoolSummary(Prefix):
    total_hosts: int = Field(..., description="Usable host addresses (IPv4), 0 for IPv6")
    assigned_count: int = Field(..., description="Addresses assigned in NetBox as of last sync")
    reserved_count: int = Field(..., description="Addresses claimed in the local allocation ledger")


class Geometry(BaseModel):
    x: Optional[float] = None
    y: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None


class DeviceDescriptor(BaseModel):
    """Flat device record handed over by the diagram parser"""
    cell_id: Optional[str] = None
    name: str
    device_type: Optional[str] = None
    ip_address: Optional[str] = None
    vlan_id: Optional[int] = None
    pool_id: Optional[int] = None
    template_id: Optional[int] = None
    geometry: Geometry = Field(default_factory=Geometry)
    style: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    FLATTENED_FIELDS: ClassVar[tuple] = ("template_id", "vlan_id", "ip_address", "pool_id", "device_type")

    @classmethod
    def from_raw(cls, data: Dict[str, Any]) -> "DeviceDescriptor":
        """Normalize a parser/UI payload: metadata.field wins, top-level field is the fallback"""
        if isinstance(data, cls):
            return data
        metadata = dict(data.get("metadata") or {})
        flat = dict(data)
        for field in cls.FLATTENED_FIELDS:
            value = metadata.get(field)
            if value is None or value == "":
                value = data.get(field)
            flat[field] = None if value == "" else value

        if flat.get("name") is None:
            flat["name"] = metadata.get("device_name") or metadata.get("name")
        if flat.get("cell_id") is not None:
            flat["cell_id"] = str(flat["cell_id"])

        if data.get("geometry") is None:
            flat["geometry"] = {
                "x": data.get("x"),
                "y": data.get("y"),
                "width": data.get("width"),
                "height": data.get("height"),
            }
        flat["metadata"] = metadata
        return cls.model_validate(flat)


class DeviceDeploymentResult(BaseModel):
    success: bool = False
    device_name: str
    external_device_id: Optional[int] = None
    external_interface_id: Optional[int] = None
    external_address_id: Optional[int] = None
    errors: List[str] = Field(default_factory=list)


class DiagramDeploymentSummary(BaseModel):
    total: int
    succeeded: int = 0
    failed: int = 0
    devices: List[DeviceDeploymentResult] = Field(default_factory=list)


class DiagramDeployRequest(BaseModel):
    site_id: int = Field(..., description="NetBox site ID", examples=[1])
    devices: Optional[List[Dict[str, Any]]] = Field(default=None, description="Device descriptors")
    diagram_xml: Optional[str] = Field(default=None, description="Draw.io XML to extract devices from")


class DeviceDeployRequest(BaseModel):
    site_id: int = Field(..., examples=[1])
    diagram_id: str = Field(..., examples=["3f2b8c1e-0000-4000-8000-000000000001"])
    device: Dict[str, Any]


class EntitySyncResult(BaseModel):
    count: int
    success: bool


class SyncResult(BaseModel):
    success: bool
    synced_at: datetime
    results: Dict[str, EntitySyncResult]


class SyncStatus(BaseModel):
    entity_type: str
    last_sync_at: Optional[datetime] = None
    status: str
    message: Optional[str] = None
    records_synced: int = 0
    last_success_at: Optional[datetime] = None


class CleanupResponse(BaseModel):
    released_count: int
