"""
Error Handling Utilities

Exception taxonomy for the allocation engine, reconciliation cache and
deployment orchestrator, plus the decorator that converts them to HTTP
exceptions at the API boundary.
"""

import json
import logging
from typing import Any, Callable, Optional
from functools import wraps
from fastapi import HTTPException
import requests

logger = logging.getLogger(__name__)


class IPAMError(Exception):
    """Base class for all reconciler errors"""
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class InvalidCIDR(IPAMError):
    """Malformed prefix input to the CIDR enumerator"""
    status_code = 400


class UnsupportedAddressFamily(IPAMError):
    """Prefix family that cannot be enumerated (IPv6 pools)"""
    status_code = 400


class InvalidAddress(IPAMError):
    """Not a syntactically valid host address"""
    status_code = 400


class PoolNotFound(IPAMError):
    """Unknown prefix external_id"""
    status_code = 404

    def __init__(self, prefix_id: Any):
        self.prefix_id = prefix_id
        super().__init__(f"IP pool {prefix_id} not found in reconciliation cache")


class AddressInUse(IPAMError):
    """Address is held in the allocation ledger by another device"""
    status_code = 409

    def __init__(self, address: str, holder: Optional[str]):
        self.address = address
        self.holder = holder
        super().__init__(f"IP address {address} is already allocated to {holder or 'another device'}")


class MissingTemplate(IPAMError):
    """Device descriptor carries no NetBox device type"""
    status_code = 400

    def __init__(self, device_name: str):
        self.device_name = device_name
        super().__init__(
            f"Device template_id is required but not found in device data for '{device_name}'"
        )


class NoDeviceRolesAvailable(IPAMError):
    """NetBox has no device roles at all"""
    status_code = 500

    def __init__(self):
        super().__init__("No device roles available in NetBox")


class SchemaMissing(IPAMError):
    """Table or column missing - migrations were not applied"""
    status_code = 500


class ExternalRegistryError(Exception):
    """NetBox API error with the response body preserved"""

    def __init__(self, message: str, status_code: Optional[int] = None, detail: Any = None,
                 original_error: Optional[Exception] = None):
        self.message = message
        self.status_code = status_code
        self.detail = detail
        self.original_error = original_error
        super().__init__(self.message)

    def _detail_text(self, field: str) -> str:
        if isinstance(self.detail, dict) and field in self.detail:
            return json.dumps(self.detail[field])
        return ""

    def is_duplicate_name(self) -> bool:
        """NetBox rejected a create because the name is taken"""
        return self.status_code == 400 and bool(self._detail_text("name"))

    def is_duplicate_address(self) -> bool:
        """NetBox rejected an IP address create as a duplicate"""
        return self.status_code == 400 and "Duplicate" in self._detail_text("address")


def handle_service_errors(func: Callable):
    """
    Decorator to convert reconciler and NetBox errors to HTTP exceptions

    Usage:
        @handle_service_errors
        async def get_pool_addresses(...):
            ...
    """
    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)

        except HTTPException:
            raise

        except IPAMError as e:
            logger.warning(f"{type(e).__name__} in {func.__name__}: {e.message}")
            raise HTTPException(status_code=e.status_code, detail=e.message)

        except ExternalRegistryError as e:
            logger.error(f"NetBox API error in {func.__name__}: {e.message} ({e.detail})")
            raise HTTPException(
                status_code=502,
                detail={"message": e.message, "netbox_status": e.status_code, "netbox_detail": e.detail}
            )

        except requests.exceptions.Timeout as e:
            logger.error(f"Timeout connecting to NetBox in {func.__name__}: {e}")
            raise HTTPException(
                status_code=504,
                detail="NetBox API request timed out. Please try again."
            )

        except requests.exceptions.ConnectionError as e:
            logger.error(f"Network error connecting to NetBox in {func.__name__}: {e}")
            raise HTTPException(
                status_code=503,
                detail="Unable to connect to NetBox. Please check network connectivity."
            )

        except Exception as e:
            logger.error(f"Unexpected error in {func.__name__}: {e}", exc_info=True)
            raise HTTPException(
                status_code=500,
                detail=f"Internal server error: {str(e)}"
            )

    return wrapper
