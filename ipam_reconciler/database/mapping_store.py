"""
Deployment Mapping Store

Persists what a diagram deployment produced: which NetBox device each
diagram device became, where its cell sits on the diagram, and the
diagram's deployment status.
"""

import json
import logging
from typing import Any, Dict, Optional

from .mysql_executor import MySQLExecutor
from ..config.constants import DeploymentStatus
from ..utils.time_utils import get_current_utc, to_db_datetime, from_db_datetime

logger = logging.getLogger(__name__)


class DeploymentMappingStore(MySQLExecutor):
    """deployment_mappings, device_diagram_mappings and diagrams tables"""

    async def upsert_deployment_mapping(self, diagram_id: str, device_name: str,
                                        descriptor: Dict[str, Any], external_device_id: int) -> None:
        now = to_db_datetime(get_current_utc())
        await self._execute_query(
            """
            INSERT INTO deployment_mappings
                (diagram_id, device_name, descriptor_json, external_device_id, deployed_at, updated_at)
            VALUES (%s, %s, %s, %s, %s, %s)
            ON DUPLICATE KEY UPDATE
                descriptor_json = VALUES(descriptor_json),
                external_device_id = VALUES(external_device_id),
                deployed_at = VALUES(deployed_at),
                updated_at = VALUES(updated_at)
            """,
            (diagram_id, device_name, json.dumps(descriptor, default=str), external_device_id, now, now)
        )
        logger.info(f"✅ Stored deployment mapping {diagram_id}/{device_name} -> NetBox device {external_device_id}")

    async def get_deployment_mapping(self, diagram_id: str, device_name: str) -> Optional[Dict[str, Any]]:
        row = await self._execute_query(
            "SELECT diagram_id, device_name, external_device_id, deployed_at FROM deployment_mappings "
            "WHERE diagram_id = %s AND device_name = %s",
            (diagram_id, device_name),
            fetch_one=True
        )
        if row is None:
            return None
        row = dict(row)
        row["deployed_at"] = from_db_datetime(row.get("deployed_at"))
        return row

    async def upsert_device_diagram_mapping(self, device_id: int, diagram_id: str,
                                            cell: Dict[str, Any]) -> None:
        """Record the diagram cell a deployed device is drawn in"""
        await self._execute_query(
            """
            INSERT INTO device_diagram_mappings
                (device_id, diagram_id, cell_id, x_position, y_position, width, height, style, modified_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON DUPLICATE KEY UPDATE
                cell_id = VALUES(cell_id),
                x_position = VALUES(x_position),
                y_position = VALUES(y_position),
                width = VALUES(width),
                height = VALUES(height),
                style = VALUES(style),
                modified_at = VALUES(modified_at)
            """,
            (
                device_id, diagram_id, cell.get("cell_id"),
                cell.get("x"), cell.get("y"), cell.get("width"), cell.get("height"),
                cell.get("style"), to_db_datetime(get_current_utc()),
            )
        )

    async def update_diagram_status(self, diagram_id: str, status: str) -> None:
        """Set deployment_status; deployed_at is stamped only on transition to deployed"""
        now = to_db_datetime(get_current_utc())
        deployed_at = now if status == DeploymentStatus.DEPLOYED else None
        await self._execute_query(
            """
            INSERT INTO diagrams (id, deployment_status, deployed_at, modified_at)
            VALUES (%s, %s, %s, %s)
            ON DUPLICATE KEY UPDATE
                deployment_status = VALUES(deployment_status),
                deployed_at = COALESCE(VALUES(deployed_at), deployed_at),
                modified_at = VALUES(modified_at)
            """,
            (diagram_id, status, deployed_at, now)
        )
        logger.info(f"✅ Diagram {diagram_id} deployment_status set to {status}")

    async def get_diagram_status(self, diagram_id: str) -> Optional[Dict[str, Any]]:
        row = await self._execute_query(
            "SELECT id, deployment_status, deployed_at FROM diagrams WHERE id = %s",
            (diagram_id,),
            fetch_one=True
        )
        if row is None:
            return None
        row = dict(row)
        row["deployed_at"] = from_db_datetime(row.get("deployed_at"))
        return row
