"""
NetBox Sync Service

Mirrors NetBox collections into the reconciliation cache. A full sync
pre-clears the catalog tables, then walks the entity types strictly in
dependency order. The first failing entity type is marked failed and the
error propagates; entity types already synced stay committed.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..config.constants import SyncEntity, SyncState
from ..database.netbox_client import NetBoxRegistryClient
from ..database.netbox_converters import (
    address_to_row, device_role_to_row, device_to_row, device_type_to_row,
    prefix_to_row, site_to_row, vlan_to_row
)
from ..database.registry_cache import RegistryCacheStore
from ..models.schemas import EntitySyncResult, SyncResult, SyncStatus
from ..utils.error_handlers import PoolNotFound
from ..utils.logging_decorators import log_operation_timing
from ..utils.network_utils import cidr_bounds
from ..utils.time_utils import get_current_utc

logger = logging.getLogger(__name__)

ENTITY_LABELS = {
    SyncEntity.SITES: "sites",
    SyncEntity.DEVICE_TYPES: "device types",
    SyncEntity.DEVICE_ROLES: "device roles",
    SyncEntity.PREFIXES: "prefixes",
    SyncEntity.VLANS: "VLANs",
    SyncEntity.DEVICES: "devices",
    SyncEntity.IP_ADDRESSES: "IP addresses",
}


class SyncService:
    """Reconciliation cache sync against NetBox"""

    def __init__(self, registry: NetBoxRegistryClient, cache: RegistryCacheStore):
        self.registry = registry
        self.cache = cache

    async def _sync_entity(self, entity: str, fetch: Callable[[], Awaitable[List[Dict[str, Any]]]],
                           convert: Callable[[Dict[str, Any]], Dict[str, Any]],
                           store: Callable[[List[Dict[str, Any]]], Awaitable[int]]) -> EntitySyncResult:
        label = ENTITY_LABELS[entity]
        logger.info(f"Syncing {label}...")
        await self.cache.set_sync_status(entity, SyncState.IN_PROGRESS, f"Fetching {label} from NetBox")

        try:
            records = await fetch()
            rows = [convert(record) for record in records]
            count = await store(rows)
        except Exception as e:
            await self.cache.set_sync_status(entity, SyncState.FAILED, str(e) or type(e).__name__)
            logger.error(f"Failed to sync {label}: {e}")
            raise

        await self.cache.set_sync_status(entity, SyncState.SUCCESS, f"Synced {count} {label}", count)
        logger.info(f"✅ Synced {count} {label}")
        return EntitySyncResult(count=count, success=True)

    async def sync_sites(self) -> EntitySyncResult:
        return await self._sync_entity(
            SyncEntity.SITES, self.registry.list_sites, site_to_row,
            lambda rows: self.cache.upsert_rows(SyncEntity.SITES, rows)
        )

    async def sync_device_types(self) -> EntitySyncResult:
        return await self._sync_entity(
            SyncEntity.DEVICE_TYPES, self.registry.list_device_types, device_type_to_row,
            lambda rows: self.cache.upsert_rows(SyncEntity.DEVICE_TYPES, rows)
        )

    async def sync_device_roles(self) -> EntitySyncResult:
        return await self._sync_entity(
            SyncEntity.DEVICE_ROLES, self.registry.list_device_roles, device_role_to_row,
            lambda rows: self.cache.upsert_rows(SyncEntity.DEVICE_ROLES, rows)
        )

    async def sync_prefixes(self) -> EntitySyncResult:
        return await self._sync_entity(
            SyncEntity.PREFIXES, self.registry.list_prefixes, prefix_to_row,
            lambda rows: self.cache.upsert_rows(SyncEntity.PREFIXES, rows)
        )

    async def sync_vlans(self) -> EntitySyncResult:
        return await self._sync_entity(
            SyncEntity.VLANS, self.registry.list_vlans, vlan_to_row,
            lambda rows: self.cache.upsert_rows(SyncEntity.VLANS, rows)
        )

    async def sync_devices(self) -> EntitySyncResult:
        return await self._sync_entity(
            SyncEntity.DEVICES, self.registry.list_devices, device_to_row,
            lambda rows: self.cache.replace_rows(SyncEntity.DEVICES, rows)
        )

    async def sync_addresses(self, prefix_id: Optional[int] = None) -> EntitySyncResult:
        """Replace cached IP addresses, all of them or only those inside one cached prefix

        Raises:
            PoolNotFound: prefix_id is not in the reconciliation cache
        """
        if prefix_id is None:
            return await self._sync_entity(
                SyncEntity.IP_ADDRESSES, self.registry.list_addresses, address_to_row,
                lambda rows: self.cache.replace_rows(SyncEntity.IP_ADDRESSES, rows)
            )

        prefix = await self.cache.get_prefix(prefix_id)
        if prefix is None:
            raise PoolNotFound(prefix_id)
        address_range = cidr_bounds(prefix["prefix"])
        return await self._sync_entity(
            SyncEntity.IP_ADDRESSES,
            lambda: self.registry.list_addresses(parent=prefix["prefix"]),
            address_to_row,
            lambda rows: self.cache.replace_rows(SyncEntity.IP_ADDRESSES, rows, address_range=address_range)
        )

    @log_operation_timing("sync_all", threshold_ms=30000)
    async def sync_all(self) -> SyncResult:
        """Full sync: pre-clear catalogs, then every entity type in dependency order"""
        logger.info("Starting full NetBox sync...")
        await self.cache.clear_catalogs()

        steps = {
            SyncEntity.SITES: self.sync_sites,
            SyncEntity.DEVICE_TYPES: self.sync_device_types,
            SyncEntity.DEVICE_ROLES: self.sync_device_roles,
            SyncEntity.PREFIXES: self.sync_prefixes,
            SyncEntity.VLANS: self.sync_vlans,
            SyncEntity.DEVICES: self.sync_devices,
            SyncEntity.IP_ADDRESSES: self.sync_addresses,
        }
        results = {}
        for entity in SyncEntity.ORDER:
            results[entity] = await steps[entity]()

        logger.info("✅ Full NetBox sync completed")
        return SyncResult(success=True, synced_at=get_current_utc(), results=results)

    async def get_sync_status(self) -> List[SyncStatus]:
        return [SyncStatus(**row) for row in await self.cache.get_sync_status()]

    # Cached catalog reads

    async def get_cached_sites(self) -> List[Dict[str, Any]]:
        return await self.cache.list_sites()

    async def get_cached_device_types(self) -> List[Dict[str, Any]]:
        return await self.cache.list_device_types()

    async def get_cached_device_roles(self) -> List[Dict[str, Any]]:
        return await self.cache.list_device_roles()

    async def get_cached_prefixes(self, site_id: Optional[int] = None) -> List[Dict[str, Any]]:
        return await self.cache.list_prefixes(site_id=site_id)

    async def get_cached_vlans(self, site_id: Optional[int] = None) -> List[Dict[str, Any]]:
        return await self.cache.list_vlans(site_id=site_id)

    async def health_check(self) -> Dict[str, Any]:
        """NetBox reachability plus the per-entity sync state"""
        from ..config.settings import NETBOX_URL

        health_data: Dict[str, Any] = {
            "status": "healthy",
            "timestamp": get_current_utc().isoformat(),
            "netbox_url": NETBOX_URL,
        }

        try:
            status = await self.registry.status()
            health_data["netbox_status"] = "connected"
            health_data["netbox_version"] = status.get("netbox-version")
        except Exception as e:
            logger.warning(f"NetBox health check failed: {e}")
            health_data["status"] = "degraded"
            health_data["netbox_status"] = "unreachable"
            health_data["netbox_error"] = str(e)

        rows = await self.cache.get_sync_status()
        health_data["database"] = "connected"
        health_data["sync"] = {row["entity_type"]: row["status"] for row in rows}
        return health_data
