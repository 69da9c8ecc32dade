"""
Reconciliation Cache Store

MySQL mirror of the NetBox collections the allocation engine and the
deployment orchestrator read: sites, device types, device roles, prefixes,
VLANs, devices and IP addresses, plus one sync_status row per entity type.

Every collection write runs in a single transaction so readers see either
the previous or the new snapshot of that collection.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from .mysql_executor import MySQLExecutor
from ..config.constants import SyncEntity, SyncState
from ..utils.time_utils import get_current_utc, to_db_datetime, from_db_datetime

logger = logging.getLogger(__name__)

# entity -> (table, columns); external_id is the upsert key of every table
CACHE_TABLES: Dict[str, tuple] = {
    SyncEntity.SITES: ("sites", (
        "external_id", "name", "slug", "status", "description", "facility",
        "time_zone", "physical_address", "latitude", "longitude", "custom_fields",
    )),
    SyncEntity.DEVICE_TYPES: ("device_types", (
        "external_id", "manufacturer_name", "manufacturer_slug", "model", "slug",
        "part_number", "u_height", "is_full_depth", "description",
        "front_image_url", "rear_image_url", "custom_fields",
    )),
    SyncEntity.DEVICE_ROLES: ("device_roles", (
        "external_id", "name", "slug", "color", "vm_role", "description", "custom_fields",
    )),
    SyncEntity.PREFIXES: ("prefixes", (
        "external_id", "prefix", "family", "network_int", "broadcast_int", "site_id",
        "site_name", "vlan_id", "status", "role_name", "is_pool", "description", "custom_fields",
    )),
    SyncEntity.VLANS: ("vlans", (
        "external_id", "vid", "name", "site_id", "site_name", "status",
        "role_name", "description", "custom_fields",
    )),
    SyncEntity.DEVICES: ("cached_devices", (
        "external_id", "name", "device_type_name", "device_role_name", "site_id",
        "site_name", "status", "primary_ip4", "primary_ip6", "serial", "asset_tag",
        "platform_name", "rack_name", "position", "custom_fields",
    )),
    SyncEntity.IP_ADDRESSES: ("cached_addresses", (
        "external_id", "address", "family", "address_int", "status",
        "assigned_object_type", "assigned_object_id", "device_name",
        "interface_name", "dns_name", "description", "custom_fields",
    )),
}

# Children (FK to sites) first, then parents
PRE_CLEAR_ORDER = ("prefixes", "vlans", "sites", "device_types", "device_roles")

PREFIX_COLUMNS = (
    "external_id, prefix, family, network_int, broadcast_int, site_id, site_name, "
    "vlan_id, status, role_name, is_pool, description, synced_at"
)


def build_upsert_query(table: str, columns: Sequence[str]) -> str:
    """INSERT ... ON DUPLICATE KEY UPDATE for every non-key column plus synced_at"""
    column_list = ", ".join(columns) + ", synced_at"
    placeholders = ", ".join(["%s"] * (len(columns) + 1))
    updates = ", ".join(f"{col} = VALUES({col})" for col in columns if col != "external_id")
    return (
        f"INSERT INTO {table} ({column_list}) VALUES ({placeholders}) "
        f"ON DUPLICATE KEY UPDATE {updates}, synced_at = VALUES(synced_at)"
    )


def _prefix_from_row(row: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    row = dict(row)
    row["is_pool"] = bool(row.get("is_pool"))
    for key in ("network_int", "broadcast_int"):
        if row.get(key) is not None:
            row[key] = int(row[key])
    if "synced_at" in row:
        row["synced_at"] = from_db_datetime(row["synced_at"])
    return row


class RegistryCacheStore(MySQLExecutor):
    """Reconciliation cache tables"""

    # Sync writes

    async def clear_catalogs(self) -> None:
        """Empty the catalog tables before a full sync, children before parents"""
        async with self.transaction("pre-clear catalogs") as cursor:
            for table in PRE_CLEAR_ORDER:
                await cursor.execute(f"DELETE FROM {table}")
        logger.info(f"Cleared cache tables: {', '.join(PRE_CLEAR_ORDER)}")

    async def upsert_rows(self, entity: str, rows: List[Dict[str, Any]]) -> int:
        """Upsert converted rows of one entity type in a single transaction"""
        table, columns = CACHE_TABLES[entity]
        if not rows:
            return 0

        query = build_upsert_query(table, columns)
        synced_at = to_db_datetime(get_current_utc())
        params = [tuple(row.get(col) for col in columns) + (synced_at,) for row in rows]

        async with self.transaction(f"upsert {table}") as cursor:
            await cursor.executemany(query, params)
        return len(rows)

    async def replace_rows(self, entity: str, rows: List[Dict[str, Any]],
                           address_range: Optional[tuple] = None) -> int:
        """Delete and reinsert an entity type in a single transaction

        address_range=(family, lo, hi) limits the delete to cached addresses
        inside that integer range (scoped address sync).
        """
        table, columns = CACHE_TABLES[entity]
        query = build_upsert_query(table, columns)
        synced_at = to_db_datetime(get_current_utc())
        params = [tuple(row.get(col) for col in columns) + (synced_at,) for row in rows]

        async with self.transaction(f"replace {table}") as cursor:
            if address_range is not None:
                family, lo, hi = address_range
                await cursor.execute(
                    f"DELETE FROM {table} WHERE family = %s AND address_int BETWEEN %s AND %s",
                    (family, lo, hi)
                )
            else:
                await cursor.execute(f"DELETE FROM {table}")
            if params:
                await cursor.executemany(query, params)
        return len(rows)

    async def set_sync_status(self, entity: str, status: str, message: Optional[str] = None,
                              records_synced: int = 0) -> None:
        now = to_db_datetime(get_current_utc())
        last_success = now if status == SyncState.SUCCESS else None
        await self._execute_query(
            """
            INSERT INTO sync_status (entity_type, last_sync_at, status, message, records_synced, last_success_at)
            VALUES (%s, %s, %s, %s, %s, %s)
            ON DUPLICATE KEY UPDATE
                last_sync_at = VALUES(last_sync_at),
                status = VALUES(status),
                message = VALUES(message),
                records_synced = VALUES(records_synced),
                last_success_at = COALESCE(VALUES(last_success_at), last_success_at)
            """,
            (entity, now, status, message, records_synced, last_success)
        )

    # Sync status reads

    async def get_sync_status(self) -> List[Dict[str, Any]]:
        rows = await self._execute_query(
            "SELECT entity_type, last_sync_at, status, message, records_synced, last_success_at "
            "FROM sync_status ORDER BY entity_type",
            fetch_all=True
        )
        result = []
        for row in rows or []:
            row = dict(row)
            row["last_sync_at"] = from_db_datetime(row.get("last_sync_at"))
            row["last_success_at"] = from_db_datetime(row.get("last_success_at"))
            result.append(row)
        return result

    async def last_successful_sync(self, entity: str):
        """Timestamp of the last successful sync of an entity type, or None"""
        row = await self._execute_query(
            "SELECT last_success_at FROM sync_status WHERE entity_type = %s",
            (entity,),
            fetch_one=True
        )
        return from_db_datetime(row["last_success_at"]) if row else None

    # Prefixes

    async def get_prefix(self, external_id: int) -> Optional[Dict[str, Any]]:
        row = await self._execute_query(
            f"SELECT {PREFIX_COLUMNS} FROM prefixes WHERE external_id = %s",
            (external_id,),
            fetch_one=True
        )
        return _prefix_from_row(row)

    async def list_prefixes(self, site_id: Optional[int] = None, pools_only: bool = False) -> List[Dict[str, Any]]:
        conditions = []
        params: list = []
        if site_id is not None:
            conditions.append("site_id = %s")
            params.append(site_id)
        if pools_only:
            conditions.append("is_pool = TRUE")
        where = f" WHERE {' AND '.join(conditions)}" if conditions else ""

        rows = await self._execute_query(
            f"SELECT {PREFIX_COLUMNS} FROM prefixes{where} ORDER BY family, network_int",
            tuple(params),
            fetch_all=True
        )
        return [_prefix_from_row(row) for row in rows or []]

    # Addresses

    async def assigned_addresses_in_range(self, family: int, lo: int, hi: int) -> List[Dict[str, Any]]:
        """Cached addresses with a device assignment inside [lo, hi]"""
        rows = await self._execute_query(
            """
            SELECT address, device_name, interface_name, synced_at
            FROM cached_addresses
            WHERE family = %s AND address_int BETWEEN %s AND %s AND device_name IS NOT NULL
            ORDER BY address_int
            """,
            (family, lo, hi),
            fetch_all=True
        )
        result = []
        for row in rows or []:
            row = dict(row)
            row["synced_at"] = from_db_datetime(row.get("synced_at"))
            result.append(row)
        return result

    async def count_assigned_in_range(self, family: int, lo: int, hi: int) -> int:
        row = await self._execute_query(
            """
            SELECT COUNT(*) AS total FROM cached_addresses
            WHERE family = %s AND address_int BETWEEN %s AND %s AND device_name IS NOT NULL
            """,
            (family, lo, hi),
            fetch_one=True
        )
        return int(row["total"]) if row else 0

    # Catalog reads

    async def list_sites(self) -> List[Dict[str, Any]]:
        return await self._execute_query(
            "SELECT external_id, name, slug, status, description, facility, time_zone "
            "FROM sites ORDER BY name",
            fetch_all=True
        ) or []

    async def list_device_types(self) -> List[Dict[str, Any]]:
        return await self._execute_query(
            "SELECT external_id, manufacturer_name, model, slug, part_number, u_height "
            "FROM device_types ORDER BY manufacturer_name, model",
            fetch_all=True
        ) or []

    async def list_device_roles(self) -> List[Dict[str, Any]]:
        return await self._execute_query(
            "SELECT external_id, name, slug, color FROM device_roles ORDER BY name",
            fetch_all=True
        ) or []

    async def get_device_role_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        return await self._execute_query(
            "SELECT external_id, name, slug FROM device_roles WHERE name = %s LIMIT 1",
            (name,),
            fetch_one=True
        )

    async def list_vlans(self, site_id: Optional[int] = None) -> List[Dict[str, Any]]:
        if site_id is not None:
            return await self._execute_query(
                "SELECT external_id, vid, name, site_id, site_name, status FROM vlans "
                "WHERE site_id = %s ORDER BY vid",
                (site_id,),
                fetch_all=True
            ) or []
        return await self._execute_query(
            "SELECT external_id, vid, name, site_id, site_name, status FROM vlans ORDER BY vid",
            fetch_all=True
        ) or []
