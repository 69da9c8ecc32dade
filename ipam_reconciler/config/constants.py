"""Constants and configuration values for the IPAM reconciler.

Centralizes status values, entity names and NetBox field values
used throughout the application.
"""


class SyncEntity:
    """Entity types mirrored from NetBox, in sync dependency order"""
    SITES = "sites"
    DEVICE_TYPES = "device_types"
    DEVICE_ROLES = "device_roles"
    PREFIXES = "prefixes"
    VLANS = "vlans"
    DEVICES = "devices"
    IP_ADDRESSES = "ip_addresses"

    ORDER = (SITES, DEVICE_TYPES, DEVICE_ROLES, PREFIXES, VLANS, DEVICES, IP_ADDRESSES)


class SyncState:
    """SyncStatus.status values"""
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"


class AllocationType:
    """Allocation ledger record types"""
    STATIC = "static"
    DYNAMIC = "dynamic"


class DeploymentStatus:
    """Diagram deployment states (draft -> deployed)"""
    DRAFT = "draft"
    DEPLOYED = "deployed"


class NetBoxStatus:
    """NetBox object status values"""
    ACTIVE = "active"


class ManagementInterface:
    """Interface created on every deployed device that carries an address"""
    NAME = "Management"
    TYPE = "virtual"
    MODE_ACCESS = "access"
    ASSIGNED_OBJECT_TYPE = "dcim.interface"


# Diagram device type -> NetBox device role name
DEVICE_ROLE_NAMES = {
    "switch": "Access Switch",
    "router": "Router",
    "firewall": "Firewall",
    "server": "Server",
    "load_balancer": "Load Balancer",
    "access_point": "Access Point",
}
DEFAULT_DEVICE_ROLE_NAME = "Network Device"


class PerformanceThresholds:
    """Performance monitoring thresholds in milliseconds"""
    NETBOX_SLOW_WARNING = 2000      # Warn if NetBox call > 2 seconds
    MYSQL_SLOW_WARNING = 2000       # Warn if query > 2 seconds
    OPERATION_SLOW = 2000           # Warn if service operation > 2 seconds


class ExecutorConfig:
    """Thread pool executor configuration"""
    READ_WORKERS = 10    # Workers for NetBox read operations
    WRITE_WORKERS = 5    # Workers for NetBox write operations


class MySQLErrorCodes:
    """MySQL server error numbers the stores react to"""
    DUPLICATE_ENTRY = 1062
    BAD_FIELD = 1054         # Unknown column
    NO_SUCH_TABLE = 1146


__all__ = [
    "SyncEntity",
    "SyncState",
    "AllocationType",
    "DeploymentStatus",
    "NetBoxStatus",
    "ManagementInterface",
    "DEVICE_ROLE_NAMES",
    "DEFAULT_DEVICE_ROLE_NAME",
    "PerformanceThresholds",
    "ExecutorConfig",
    "MySQLErrorCodes",
]
