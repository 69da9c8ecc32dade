"""
Versioned Schema Migrations

Applied once at startup, before any store or service is constructed.
Stores assume the schema exists and raise SchemaMissing when it does not;
no DDL is issued from request handling paths.
"""

import logging
from typing import List, Tuple

import aiomysql

logger = logging.getLogger(__name__)

SCHEMA_MIGRATIONS_TABLE = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version INT PRIMARY KEY,
    description VARCHAR(255) NOT NULL,
    applied_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
"""

# (version, description, statements)
MIGRATIONS: List[Tuple[int, str, List[str]]] = [
    (1, "reconciliation cache, allocation ledger and sync status", [
        """
        CREATE TABLE IF NOT EXISTS sites (
            id INT AUTO_INCREMENT PRIMARY KEY,
            external_id INT NOT NULL,
            name VARCHAR(255) NOT NULL,
            slug VARCHAR(255),
            status VARCHAR(50),
            description TEXT,
            facility VARCHAR(255),
            time_zone VARCHAR(64),
            physical_address TEXT,
            latitude DECIMAL(8,6),
            longitude DECIMAL(9,6),
            custom_fields JSON,
            synced_at DATETIME NOT NULL,
            UNIQUE KEY uq_sites_external_id (external_id)
        ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
        """,
        """
        CREATE TABLE IF NOT EXISTS device_types (
            id INT AUTO_INCREMENT PRIMARY KEY,
            external_id INT NOT NULL,
            manufacturer_name VARCHAR(255),
            manufacturer_slug VARCHAR(255),
            model VARCHAR(255) NOT NULL,
            slug VARCHAR(255),
            part_number VARCHAR(255),
            u_height DECIMAL(4,1),
            is_full_depth BOOLEAN,
            description TEXT,
            front_image_url VARCHAR(512),
            rear_image_url VARCHAR(512),
            custom_fields JSON,
            synced_at DATETIME NOT NULL,
            UNIQUE KEY uq_device_types_external_id (external_id)
        ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
        """,
        """
        CREATE TABLE IF NOT EXISTS device_roles (
            id INT AUTO_INCREMENT PRIMARY KEY,
            external_id INT NOT NULL,
            name VARCHAR(255) NOT NULL,
            slug VARCHAR(255),
            color VARCHAR(16),
            vm_role BOOLEAN,
            description TEXT,
            custom_fields JSON,
            synced_at DATETIME NOT NULL,
            UNIQUE KEY uq_device_roles_external_id (external_id),
            KEY idx_device_roles_name (name)
        ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
        """,
        """
        CREATE TABLE IF NOT EXISTS prefixes (
            id INT AUTO_INCREMENT PRIMARY KEY,
            external_id INT NOT NULL,
            prefix VARCHAR(64) NOT NULL,
            family TINYINT NOT NULL,
            network_int DECIMAL(39,0) NOT NULL,
            broadcast_int DECIMAL(39,0) NOT NULL,
            site_id INT NULL,
            site_name VARCHAR(255),
            vlan_id INT NULL,
            status VARCHAR(50),
            role_name VARCHAR(255),
            is_pool BOOLEAN NOT NULL DEFAULT FALSE,
            description TEXT,
            custom_fields JSON,
            synced_at DATETIME NOT NULL,
            UNIQUE KEY uq_prefixes_external_id (external_id),
            KEY idx_prefixes_site (site_id),
            CONSTRAINT fk_prefixes_site FOREIGN KEY (site_id) REFERENCES sites (external_id)
        ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
        """,
        """
        CREATE TABLE IF NOT EXISTS vlans (
            id INT AUTO_INCREMENT PRIMARY KEY,
            external_id INT NOT NULL,
            vid SMALLINT NOT NULL,
            name VARCHAR(255),
            site_id INT NULL,
            site_name VARCHAR(255),
            status VARCHAR(50),
            role_name VARCHAR(255),
            description TEXT,
            custom_fields JSON,
            synced_at DATETIME NOT NULL,
            UNIQUE KEY uq_vlans_external_id (external_id),
            KEY idx_vlans_site (site_id),
            CONSTRAINT fk_vlans_site FOREIGN KEY (site_id) REFERENCES sites (external_id)
        ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
        """,
        """
        CREATE TABLE IF NOT EXISTS cached_devices (
            id INT AUTO_INCREMENT PRIMARY KEY,
            external_id INT NOT NULL,
            name VARCHAR(255),
            device_type_name VARCHAR(255),
            device_role_name VARCHAR(255),
            site_id INT NULL,
            site_name VARCHAR(255),
            status VARCHAR(50),
            primary_ip4 VARCHAR(64),
            primary_ip6 VARCHAR(64),
            serial VARCHAR(255),
            asset_tag VARCHAR(255),
            platform_name VARCHAR(255),
            rack_name VARCHAR(255),
            position DECIMAL(5,1),
            custom_fields JSON,
            synced_at DATETIME NOT NULL,
            UNIQUE KEY uq_cached_devices_external_id (external_id),
            KEY idx_cached_devices_name (name)
        ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
        """,
        """
        CREATE TABLE IF NOT EXISTS cached_addresses (
            id INT AUTO_INCREMENT PRIMARY KEY,
            external_id INT NOT NULL,
            address VARCHAR(64) NOT NULL,
            family TINYINT NOT NULL,
            address_int DECIMAL(39,0) NOT NULL,
            status VARCHAR(50),
            assigned_object_type VARCHAR(100),
            assigned_object_id INT,
            device_name VARCHAR(255),
            interface_name VARCHAR(255),
            dns_name VARCHAR(255),
            description TEXT,
            custom_fields JSON,
            synced_at DATETIME NOT NULL,
            UNIQUE KEY uq_cached_addresses_external_id (external_id),
            KEY idx_cached_addresses_address (address),
            KEY idx_cached_addresses_range (family, address_int)
        ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
        """,
        """
        CREATE TABLE IF NOT EXISTS allocation_records (
            id INT AUTO_INCREMENT PRIMARY KEY,
            address VARCHAR(64) NOT NULL,
            family TINYINT NOT NULL,
            address_int DECIMAL(39,0) NOT NULL,
            subnet VARCHAR(64),
            vlan_id INT,
            allocation_type ENUM('static', 'dynamic') NOT NULL DEFAULT 'static',
            device_name VARCHAR(255),
            created_at DATETIME(6) NOT NULL,
            UNIQUE KEY uq_allocation_records_address (address),
            KEY idx_allocation_records_range (family, address_int),
            KEY idx_allocation_records_created (created_at)
        ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
        """,
        """
        CREATE TABLE IF NOT EXISTS sync_status (
            entity_type VARCHAR(50) PRIMARY KEY,
            last_sync_at DATETIME NOT NULL,
            status VARCHAR(20) NOT NULL,
            message TEXT,
            records_synced INT NOT NULL DEFAULT 0,
            last_success_at DATETIME NULL
        ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
        """,
    ]),
    (2, "deployment mappings and diagram deployment status", [
        """
        CREATE TABLE IF NOT EXISTS deployment_mappings (
            id INT AUTO_INCREMENT PRIMARY KEY,
            diagram_id VARCHAR(64) NOT NULL,
            device_name VARCHAR(255) NOT NULL,
            descriptor_json JSON,
            external_device_id INT NOT NULL,
            deployed_at DATETIME NOT NULL,
            updated_at DATETIME NOT NULL,
            UNIQUE KEY uq_deployment_mappings (diagram_id, device_name),
            KEY idx_deployment_mappings_device (external_device_id)
        ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
        """,
        """
        CREATE TABLE IF NOT EXISTS device_diagram_mappings (
            id INT AUTO_INCREMENT PRIMARY KEY,
            device_id INT NOT NULL,
            diagram_id VARCHAR(64) NOT NULL,
            cell_id VARCHAR(255),
            x_position DOUBLE,
            y_position DOUBLE,
            width DOUBLE,
            height DOUBLE,
            style TEXT,
            modified_at DATETIME NOT NULL,
            UNIQUE KEY uq_device_diagram (device_id, diagram_id)
        ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
        """,
        """
        CREATE TABLE IF NOT EXISTS diagrams (
            id VARCHAR(64) PRIMARY KEY,
            name VARCHAR(255),
            deployment_status VARCHAR(50) NOT NULL DEFAULT 'draft',
            deployed_at DATETIME NULL,
            modified_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
            KEY idx_diagrams_deployment_status (deployment_status)
        ) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4
        """,
    ]),
]


async def get_applied_versions(cursor) -> set:
    await cursor.execute("SELECT version FROM schema_migrations")
    rows = await cursor.fetchall()
    return {row["version"] for row in rows}


async def run_migrations(pool: aiomysql.Pool) -> List[int]:
    """Apply every pending migration in version order

    Returns:
        Versions applied by this call
    """
    applied_now = []
    async with pool.acquire() as conn:
        async with conn.cursor(aiomysql.DictCursor) as cursor:
            await cursor.execute(SCHEMA_MIGRATIONS_TABLE)
            applied = await get_applied_versions(cursor)

            for version, description, statements in MIGRATIONS:
                if version in applied:
                    continue

                logger.info(f"Applying migration {version}: {description}")
                try:
                    for statement in statements:
                        await cursor.execute(statement)
                    await cursor.execute(
                        "INSERT INTO schema_migrations (version, description) VALUES (%s, %s)",
                        (version, description)
                    )
                    await conn.commit()
                except Exception as e:
                    await conn.rollback()
                    logger.error(f"Migration {version} failed: {e}", exc_info=True)
                    raise

                applied_now.append(version)

    if applied_now:
        logger.info(f"✅ Applied migrations: {applied_now}")
    else:
        logger.info("Database schema is up to date")
    return applied_now
