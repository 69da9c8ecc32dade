"""
NetBox Client Management

Handles NetBox API client initialization, thread pool executors, and the
registry client used by sync and deployment. pynetbox is blocking, so every
call runs in a dedicated read or write executor and returns plain dicts.
"""

import asyncio
import concurrent.futures
import json
import logging
import time
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional

import pynetbox
import requests
import urllib3
from requests.adapters import HTTPAdapter

from ..config.constants import ExecutorConfig, PerformanceThresholds
from ..config.settings import NETBOX_URL, NETBOX_TOKEN, NETBOX_SSL_VERIFY, NETBOX_TIMEOUT
from ..utils.error_handlers import ExternalRegistryError

logger = logging.getLogger(__name__)

# Suppress InsecureRequestWarning when SSL verification is disabled
if not NETBOX_SSL_VERIFY:
    urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)


@lru_cache(maxsize=1)
def get_netbox_read_executor():
    """Thread pool for read operations (GET requests)"""
    return concurrent.futures.ThreadPoolExecutor(
        max_workers=ExecutorConfig.READ_WORKERS,
        thread_name_prefix="netbox_read_"
    )


@lru_cache(maxsize=1)
def get_netbox_write_executor():
    """Thread pool for write operations (POST/PATCH)"""
    return concurrent.futures.ThreadPoolExecutor(
        max_workers=ExecutorConfig.WRITE_WORKERS,
        thread_name_prefix="netbox_write_"
    )


class TimeoutHTTPAdapter(HTTPAdapter):
    """HTTP adapter that applies a default timeout to every request"""

    def __init__(self, *args, timeout: float = NETBOX_TIMEOUT, **kwargs):
        self.timeout = timeout
        super().__init__(*args, **kwargs)

    def send(self, request, **kwargs):
        if kwargs.get("timeout") is None:
            kwargs["timeout"] = self.timeout
        return super().send(request, **kwargs)


def create_netbox_api(url: str = None, token: str = None, ssl_verify: bool = None,
                      timeout: float = None) -> pynetbox.api:
    """Build a pynetbox API object with SSL and timeout settings applied"""
    url = url or NETBOX_URL
    token = token or NETBOX_TOKEN
    ssl_verify = NETBOX_SSL_VERIFY if ssl_verify is None else ssl_verify
    timeout = NETBOX_TIMEOUT if timeout is None else timeout

    logger.info(f"Initializing NetBox client: {url} (timeout={timeout}s, ssl_verify={ssl_verify})")
    api = pynetbox.api(url, token=token)

    session = requests.Session()
    session.verify = ssl_verify
    adapter = TimeoutHTTPAdapter(timeout=timeout)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    api.http_session = session
    return api


def _parse_error_detail(error: pynetbox.RequestError) -> Any:
    """NetBox returns a JSON body for validation errors; fall back to raw text"""
    raw = getattr(error, "error", None)
    if isinstance(raw, (dict, list)):
        return raw
    try:
        return json.loads(raw) if raw else None
    except (TypeError, ValueError):
        return raw


def _translate_error(error: pynetbox.RequestError, operation_name: str) -> ExternalRegistryError:
    req = getattr(error, "req", None)
    status_code = getattr(req, "status_code", None)
    detail = _parse_error_detail(error)
    return ExternalRegistryError(
        f"NetBox {operation_name} failed",
        status_code=status_code,
        detail=detail,
        original_error=error
    )


async def _run_in_executor(executor, operation: Callable, operation_name: str) -> Any:
    loop = asyncio.get_running_loop()
    start = time.time()
    try:
        result = await loop.run_in_executor(executor, operation)
    except pynetbox.RequestError as e:
        logger.error(f"NETBOX FAILED: {operation_name} - {e}")
        raise _translate_error(e, operation_name) from e
    except Exception as e:
        logger.error(f"NETBOX FAILED: {operation_name} - {e}")
        raise

    elapsed = (time.time() - start) * 1000
    # Only log slow operations
    if elapsed > PerformanceThresholds.NETBOX_SLOW_WARNING:
        logger.warning(f"NETBOX SLOW: {operation_name} took {elapsed:.0f}ms")
    return result


async def run_netbox_get(get_operation: Callable, operation_name: str) -> Any:
    """Run a NetBox GET operation (read)"""
    return await _run_in_executor(get_netbox_read_executor(), get_operation, operation_name)


async def run_netbox_write(write_operation: Callable, operation_name: str) -> Any:
    """Run a NetBox write operation (POST/PATCH)"""
    return await _run_in_executor(get_netbox_write_executor(), write_operation, operation_name)


def record_to_dict(record) -> Optional[Dict[str, Any]]:
    """pynetbox Record -> plain dict, nested records included"""
    if record is None:
        return None
    if isinstance(record, dict):
        return record
    return dict(record)


def _fetch(endpoint, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
    records = endpoint.filter(**filters) if filters else endpoint.all()
    return [record_to_dict(r) for r in records]


class NetBoxRegistryClient:
    """
    External registry client

    Reads full collections for the reconciliation cache and performs the
    writes the deployment orchestrator needs. Everything is returned as
    plain dicts so callers never touch pynetbox records.
    """

    def __init__(self, api: pynetbox.api = None):
        self.nb = api if api is not None else create_netbox_api()

    # Reads

    async def list_sites(self) -> List[Dict[str, Any]]:
        return await run_netbox_get(lambda: _fetch(self.nb.dcim.sites, {}), "list sites")

    async def list_device_types(self) -> List[Dict[str, Any]]:
        return await run_netbox_get(lambda: _fetch(self.nb.dcim.device_types, {}), "list device types")

    async def list_device_roles(self) -> List[Dict[str, Any]]:
        return await run_netbox_get(lambda: _fetch(self.nb.dcim.device_roles, {}), "list device roles")

    async def list_prefixes(self, site_id: Optional[int] = None) -> List[Dict[str, Any]]:
        filters = {"site_id": site_id} if site_id is not None else {}
        return await run_netbox_get(lambda: _fetch(self.nb.ipam.prefixes, filters), "list prefixes")

    async def list_vlans(self, site_id: Optional[int] = None) -> List[Dict[str, Any]]:
        filters = {"site_id": site_id} if site_id is not None else {}
        return await run_netbox_get(lambda: _fetch(self.nb.ipam.vlans, filters), "list VLANs")

    async def list_devices(self, **filters) -> List[Dict[str, Any]]:
        return await run_netbox_get(lambda: _fetch(self.nb.dcim.devices, filters), "list devices")

    async def list_addresses(self, **filters) -> List[Dict[str, Any]]:
        return await run_netbox_get(lambda: _fetch(self.nb.ipam.ip_addresses, filters), "list IP addresses")

    async def list_interfaces(self, **filters) -> List[Dict[str, Any]]:
        return await run_netbox_get(lambda: _fetch(self.nb.dcim.interfaces, filters), "list interfaces")

    async def get_device_by_name(self, name: str) -> Optional[Dict[str, Any]]:
        devices = await self.list_devices(name=name)
        return devices[0] if devices else None

    async def status(self) -> Dict[str, Any]:
        return await run_netbox_get(lambda: self.nb.status(), "status")

    # Writes

    async def create_device(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return await run_netbox_write(
            lambda: record_to_dict(self.nb.dcim.devices.create(data)),
            f"create device {data.get('name')}"
        )

    async def update_device(self, device_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        return await run_netbox_write(
            lambda: self._update(self.nb.dcim.devices, device_id, data),
            f"update device {device_id}"
        )

    async def create_interface(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return await run_netbox_write(
            lambda: record_to_dict(self.nb.dcim.interfaces.create(data)),
            f"create interface {data.get('name')} on device {data.get('device')}"
        )

    async def create_address(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return await run_netbox_write(
            lambda: record_to_dict(self.nb.ipam.ip_addresses.create(data)),
            f"create IP address {data.get('address')}"
        )

    async def update_address(self, address_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        return await run_netbox_write(
            lambda: self._update(self.nb.ipam.ip_addresses, address_id, data),
            f"update IP address {address_id}"
        )

    async def create_cable(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return await run_netbox_write(
            lambda: record_to_dict(self.nb.dcim.cables.create(data)),
            "create cable"
        )

    @staticmethod
    def _update(endpoint, object_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        record = endpoint.get(object_id)
        if record is None:
            raise ExternalRegistryError(f"NetBox object {object_id} not found", status_code=404)
        record.update(data)
        return record_to_dict(record)
