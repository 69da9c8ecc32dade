"""
Allocation Ledger Store

Local record of addresses claimed through this service. At most one record
per address, enforced by the UNIQUE(address) index: a claim is a single
INSERT and a duplicate-key violation is the "already allocated" signal.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from .mysql_executor import MySQLExecutor, is_duplicate_key
from ..config.constants import AllocationType
from ..utils.network_utils import address_family, address_to_int
from ..utils.time_utils import get_current_utc, to_db_datetime, from_db_datetime

logger = logging.getLogger(__name__)

RECORD_COLUMNS = "address, subnet, vlan_id, allocation_type, device_name, created_at"


def _record_from_row(row: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    record = dict(row)
    record["created_at"] = from_db_datetime(record.get("created_at"))
    return record


class AllocationLedgerStore(MySQLExecutor):
    """allocation_records table"""

    async def insert(self, address: str, device_name: Optional[str], subnet: Optional[str] = None,
                     vlan_id: Optional[int] = None,
                     allocation_type: str = AllocationType.STATIC) -> Optional[Dict[str, Any]]:
        """Atomically claim a normalized address

        Returns:
            The stored record, or None when the address is already claimed
        """
        created_at = get_current_utc()
        try:
            await self._execute_query(
                """
                INSERT INTO allocation_records
                    (address, family, address_int, subnet, vlan_id, allocation_type, device_name, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (address, address_family(address), address_to_int(address), subnet, vlan_id,
                 allocation_type, device_name, to_db_datetime(created_at))
            )
        except Exception as e:
            if is_duplicate_key(e):
                logger.info(f"Address {address} already present in allocation ledger")
                return None
            raise

        return {
            "address": address,
            "subnet": subnet,
            "vlan_id": vlan_id,
            "allocation_type": allocation_type,
            "device_name": device_name,
            "created_at": created_at,
        }

    async def get(self, address: str) -> Optional[Dict[str, Any]]:
        row = await self._execute_query(
            f"SELECT {RECORD_COLUMNS} FROM allocation_records WHERE address = %s",
            (address,),
            fetch_one=True
        )
        return _record_from_row(row)

    async def delete(self, address: str) -> Optional[Dict[str, Any]]:
        """Remove the record for an address

        Returns:
            The deleted record, or None when nothing was claimed
        """
        async with self.transaction(f"release {address}") as cursor:
            await cursor.execute(
                f"SELECT {RECORD_COLUMNS} FROM allocation_records WHERE address = %s FOR UPDATE",
                (address,)
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            await cursor.execute("DELETE FROM allocation_records WHERE address = %s", (address,))
        return _record_from_row(row)

    async def list(self, device_name: Optional[str] = None) -> List[Dict[str, Any]]:
        if device_name:
            rows = await self._execute_query(
                f"SELECT {RECORD_COLUMNS} FROM allocation_records WHERE device_name = %s "
                f"ORDER BY family, address_int",
                (device_name,),
                fetch_all=True
            )
        else:
            rows = await self._execute_query(
                f"SELECT {RECORD_COLUMNS} FROM allocation_records ORDER BY family, address_int",
                fetch_all=True
            )
        return [_record_from_row(row) for row in rows or []]

    async def count_in_range(self, family: int, lo: int, hi: int) -> int:
        row = await self._execute_query(
            "SELECT COUNT(*) AS total FROM allocation_records "
            "WHERE family = %s AND address_int BETWEEN %s AND %s",
            (family, lo, hi),
            fetch_one=True
        )
        return int(row["total"]) if row else 0

    async def delete_orphans(self, older_than: datetime) -> int:
        """Delete claims older than the cutoff whose address never showed up assigned in NetBox"""
        return await self._execute_query(
            """
            DELETE a FROM allocation_records a
            LEFT JOIN cached_addresses c
                ON c.address = a.address AND c.device_name IS NOT NULL
            WHERE a.created_at < %s AND c.id IS NULL
            """,
            (to_db_datetime(older_than),)
        )
