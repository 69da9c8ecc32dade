import logging
from datetime import timedelta
from typing import List, Optional

from ..config.constants import AllocationType, SyncEntity
from ..config.settings import POOL_ADDRESS_LIMIT, ORPHAN_ALLOCATION_MAX_AGE_HOURS
from ..database.allocation_ledger import AllocationLedgerStore
from ..database.registry_cache import RegistryCacheStore
from ..models.schemas import (
    AllocationRecord, PoolAddress, PoolAddressesResponse, PoolSummary, Prefix
)
from ..utils.error_handlers import AddressInUse, PoolNotFound
from ..utils.logging_decorators import log_operation_timing
from ..utils.network_utils import cidr_bounds, enumerate_hosts, parse_host_address, usable_host_count
from ..utils.time_utils import get_current_utc

logger = logging.getLogger(__name__)

OCCUPANCY_SOURCE_EXTERNAL = "external"


def canonical_address(ip_address: str) -> str:
    """Validated, suffix-free, canonical text form of a host address"""
    return str(parse_host_address(ip_address))


class AllocationService:
    """Service class for pool browsing and address claims

    Pool occupancy shown to users comes from the reconciliation cache only.
    Claims go through the allocation ledger, whose UNIQUE(address) index is
    the single arbiter between concurrent requests.
    """

    def __init__(self, cache: RegistryCacheStore, ledger: AllocationLedgerStore,
                 address_limit: int = POOL_ADDRESS_LIMIT):
        self.cache = cache
        self.ledger = ledger
        self.address_limit = address_limit

    async def _resolve_prefix(self, prefix_id: int) -> dict:
        prefix = await self.cache.get_prefix(prefix_id)
        if prefix is None:
            raise PoolNotFound(prefix_id)
        return prefix

    @log_operation_timing("list_pool_addresses", threshold_ms=2000)
    async def list_pool_addresses(self, prefix_id: int, limit: Optional[int] = None) -> PoolAddressesResponse:
        """Enumerate a pool and mark the addresses NetBox has assigned

        Raises:
            PoolNotFound: Prefix is not in the reconciliation cache
            UnsupportedAddressFamily: IPv6 prefix
        """
        prefix = await self._resolve_prefix(prefix_id)
        hosts = enumerate_hosts(prefix["prefix"], self.address_limit if limit is None else limit)

        family, lo, hi = cidr_bounds(prefix["prefix"])
        assigned = await self.cache.assigned_addresses_in_range(family, lo, hi)
        occupancy = {row["address"]: row for row in assigned}

        addresses = []
        for host in hosts:
            row = occupancy.get(host)
            if row is None:
                addresses.append(PoolAddress(ip_address=host, is_allocated=False))
            else:
                addresses.append(PoolAddress(
                    ip_address=host,
                    is_allocated=True,
                    device_name=row["device_name"],
                    allocated_at=row.get("synced_at"),
                    source=OCCUPANCY_SOURCE_EXTERNAL
                ))

        synced_at = await self.cache.last_successful_sync(SyncEntity.IP_ADDRESSES)
        logger.info(
            f"Pool {prefix['prefix']} (id={prefix_id}): {len(hosts)} addresses listed, "
            f"{sum(1 for a in addresses if a.is_allocated)} allocated in NetBox"
        )
        return PoolAddressesResponse(
            prefix=Prefix(**prefix),
            addresses=addresses,
            cache_synced_at=synced_at
        )

    @log_operation_timing("allocate_address", threshold_ms=2000)
    async def allocate(self, ip_address: str, device_name: Optional[str], pool_id: Optional[int] = None,
                       vlan_id: Optional[int] = None,
                       allocation_type: str = AllocationType.STATIC) -> Optional[AllocationRecord]:
        """Claim an address in the allocation ledger

        Returns:
            The new record, or None when the address is already claimed

        Raises:
            InvalidAddress: Not a valid host address
        """
        address = canonical_address(ip_address)

        subnet = None
        if pool_id is not None:
            prefix = await self.cache.get_prefix(pool_id)
            if prefix is not None:
                subnet = prefix["prefix"]
            else:
                logger.warning(f"Pool {pool_id} not in cache, recording {address} without subnet")

        record = await self.ledger.insert(
            address, device_name, subnet=subnet, vlan_id=vlan_id, allocation_type=allocation_type
        )
        if record is None:
            logger.warning(f"IP {address} already allocated, claim by {device_name} rejected")
            return None

        logger.info(f"Allocated IP {address} to {device_name} (subnet={subnet}, vlan={vlan_id})")
        return AllocationRecord(**record)

    @log_operation_timing("release_address", threshold_ms=2000)
    async def release(self, ip_address: str) -> Optional[AllocationRecord]:
        """Remove a claim; None when there was nothing to release"""
        address = canonical_address(ip_address)
        record = await self.ledger.delete(address)
        if record is None:
            logger.info(f"IP {address} not found in allocation ledger, nothing to release")
            return None

        logger.info(f"Released IP {address} (was {record.get('device_name')})")
        return AllocationRecord(**record)

    async def claim_for_device(self, ip_address: str, device_name: str, pool_id: Optional[int] = None,
                               vlan_id: Optional[int] = None) -> AllocationRecord:
        """Claim an address for a device, accepting an existing claim by the same device

        Raises:
            AddressInUse: Another device holds the address
        """
        record = await self.allocate(ip_address, device_name, pool_id=pool_id, vlan_id=vlan_id)
        if record is not None:
            return record

        address = canonical_address(ip_address)
        existing = await self.ledger.get(address)
        if existing is None:
            # Released between the insert and the lookup
            record = await self.allocate(ip_address, device_name, pool_id=pool_id, vlan_id=vlan_id)
            if record is not None:
                return record
            existing = await self.ledger.get(address)

        if existing is not None and existing.get("device_name") == device_name:
            logger.info(f"IP {address} already claimed by {device_name}, reusing claim")
            return AllocationRecord(**existing)

        raise AddressInUse(address, existing.get("device_name") if existing else None)

    async def get_allocation(self, ip_address: str) -> Optional[AllocationRecord]:
        record = await self.ledger.get(canonical_address(ip_address))
        return AllocationRecord(**record) if record else None

    async def list_allocations(self, device_name: Optional[str] = None) -> List[AllocationRecord]:
        return [AllocationRecord(**r) for r in await self.ledger.list(device_name)]

    @log_operation_timing("list_pools", threshold_ms=2000)
    async def list_pools(self, site_id: Optional[int] = None, pools_only: bool = False) -> List[PoolSummary]:
        """Cached prefixes with NetBox-assigned and ledger-claimed counts reported separately"""
        summaries = []
        for prefix in await self.cache.list_prefixes(site_id=site_id, pools_only=pools_only):
            family, lo, hi = cidr_bounds(prefix["prefix"])
            summaries.append(PoolSummary(
                **prefix,
                total_hosts=usable_host_count(prefix["prefix"]) if family == 4 else 0,
                assigned_count=await self.cache.count_assigned_in_range(family, lo, hi),
                reserved_count=await self.ledger.count_in_range(family, lo, hi),
            ))
        return summaries

    @log_operation_timing("cleanup_orphaned_allocations", threshold_ms=2000)
    async def cleanup_orphaned_allocations(self, max_age_hours: Optional[int] = None) -> int:
        """Drop claims that never materialized in NetBox within max_age_hours"""
        hours = ORPHAN_ALLOCATION_MAX_AGE_HOURS if max_age_hours is None else max_age_hours
        cutoff = get_current_utc() - timedelta(hours=hours)
        released = await self.ledger.delete_orphans(cutoff)
        if released:
            logger.info(f"✅ Released {released} orphaned allocations older than {hours}h")
        else:
            logger.debug(f"No orphaned allocations older than {hours}h")
        return released
