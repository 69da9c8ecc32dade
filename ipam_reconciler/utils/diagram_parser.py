"""Draw.io diagram parsing.

Extracts network devices from Draw.io XML and hands them over as
normalized DeviceDescriptor objects. Both plain and compressed
(deflate + base64) <diagram> payloads are accepted.
"""

import base64
import html
import json
import logging
import re
import zlib
import xml.etree.ElementTree as ET
from typing import Any, Dict, Iterator, Optional, Tuple
from urllib.parse import unquote

from pydantic import ValidationError

from ..models.schemas import DeviceDescriptor

logger = logging.getLogger(__name__)

DEVICE_NAME_PATTERN = re.compile(r"([A-Z]+)-([A-Z]+)-(\d+)")
IPV4_LIKE = re.compile(r"^\d+\.\d+\.\d+\.\d+")
HTML_TAG = re.compile(r"<[^>]*>")
WHITESPACE = re.compile(r"\s+")

METADATA_WRAPPERS = ("object", "UserObject")
WRAPPER_RESERVED_ATTRS = ("id", "label", "placeholders")

# Checked in order against the device name
DEVICE_TYPE_MARKERS = (
    (lambda name: "-SW-" in name or name.startswith("SW-"), "switch"),
    (lambda name: "-RTR-" in name, "router"),
    (lambda name: "-FW-" in name, "firewall"),
    (lambda name: "-SRV-" in name, "server"),
    (lambda name: "-AP-" in name, "access_point"),
)
DEFAULT_DEVICE_TYPE = "server"


def infer_device_type(name: str) -> str:
    for matches, device_type in DEVICE_TYPE_MARKERS:
        if matches(name):
            return device_type
    return DEFAULT_DEVICE_TYPE


def html_to_text(value: str) -> str:
    """Reduce an HTML label to its text"""
    value = html.unescape(value)
    if "<" in value:
        value = HTML_TAG.sub(" ", value)
    return WHITESPACE.sub(" ", value).strip()


def parse_metadata(value: str) -> Dict[str, Any]:
    """Parse a JSON object or key=value;key2=value2 label"""
    metadata: Dict[str, Any] = {}
    if not value:
        return metadata

    if value.startswith("{"):
        try:
            parsed = json.loads(value)
            if isinstance(parsed, dict):
                return parsed
        except ValueError:
            pass

    for pair in value.split(";"):
        key, sep, val = pair.partition("=")
        if sep and key.strip():
            metadata[key.strip()] = val.strip()
    return metadata


def _inflate(payload: str) -> str:
    """Draw.io compressed diagram: base64(raw deflate(urlencoded xml))"""
    try:
        raw = zlib.decompress(base64.b64decode(payload), -15)
    except zlib.error as e:
        raise ValueError(f"Cannot decompress diagram payload: {e}") from e
    return unquote(raw.decode("utf-8"))


def find_graph_model(root: ET.Element) -> Optional[ET.Element]:
    if root.tag == "mxGraphModel":
        return root
    if root.tag == "mxfile":
        diagram = root.find("diagram")
        if diagram is None:
            return None
        model = diagram.find("mxGraphModel")
        if model is not None:
            return model
        if diagram.text and diagram.text.strip():
            return find_graph_model(ET.fromstring(_inflate(diagram.text.strip())))
    return None


def _unwrap(element: ET.Element) -> Tuple[Optional[ET.Element], Dict[str, str], Optional[str], Optional[str]]:
    """Return (mxCell, object attributes, cell id, label) for a root child"""
    if element.tag in METADATA_WRAPPERS:
        cell = element.find("mxCell")
        attrs = {k: v for k, v in element.attrib.items() if k not in WRAPPER_RESERVED_ATTRS}
        return cell, attrs, element.get("id"), element.get("label", "")

    if element.tag != "mxCell":
        return None, None, None, None

    nested = element.find("Object")
    attrs = dict(nested.attrib) if nested is not None else None
    return element, attrs, element.get("id"), element.get("value", "")


def _geometry(cell: ET.Element) -> Dict[str, Optional[float]]:
    geometry = cell.find("mxGeometry") if cell is not None else None
    result = {}
    for key in ("x", "y", "width", "height"):
        raw = geometry.get(key) if geometry is not None else None
        result[key] = float(raw) if raw else None
    return result


def device_from_element(element: ET.Element) -> Optional[DeviceDescriptor]:
    """Build a descriptor from one child of mxGraphModel/root, or None if it is not a device"""
    cell, object_data, cell_id, value = _unwrap(element)
    if cell is None and object_data is None:
        return None

    style = cell.get("style", "") if cell is not None else ""
    has_image_shape = "shape=image" in style
    if not value and object_data is None and not has_image_shape:
        return None

    plain_text = html_to_text(value or "")
    is_device = (
        object_data is not None
        or has_image_shape
        or "archiflow_device" in (value or "")
        or "archiflow" in style
    )
    if not is_device and not DEVICE_NAME_PATTERN.search(plain_text):
        return None

    name = plain_text
    ip_address = None
    parts = plain_text.split()
    if len(parts) >= 2:
        name = parts[0]
        if IPV4_LIKE.match(parts[1]):
            ip_address = parts[1]

    if object_data is not None:
        metadata = dict(object_data)
        ip_address = metadata.get("ip_address") or ip_address
    else:
        metadata = parse_metadata(plain_text)

    name = metadata.get("device_name") or metadata.get("name") or name
    if not name:
        logger.debug(f"Skipping cell {cell_id}: device has no name")
        return None

    device_type = metadata.get("device_type") or metadata.get("type") or infer_device_type(name)

    raw = {
        "cell_id": cell_id,
        "name": name,
        "device_type": device_type,
        "ip_address": metadata.get("ip_address") or metadata.get("ip") or ip_address,
        "geometry": _geometry(cell),
        "style": style,
        "metadata": metadata,
    }
    try:
        return DeviceDescriptor.from_raw(raw)
    except ValidationError as e:
        logger.warning(f"Skipping cell {cell_id} ({name}): invalid device metadata - {e.error_count()} error(s)")
        return None


def extract_devices(diagram_xml: str) -> Iterator[DeviceDescriptor]:
    """Yield the devices drawn in a Draw.io diagram

    Raises:
        ValueError: Empty input
        xml.etree.ElementTree.ParseError: Malformed XML
    """
    if not diagram_xml or not diagram_xml.strip():
        raise ValueError("Diagram XML is required")

    model = find_graph_model(ET.fromstring(diagram_xml))
    if model is None or model.find("root") is None:
        logger.info("No mxGraphModel root found in diagram")
        return

    count = 0
    for element in model.find("root"):
        device = device_from_element(element)
        if device is not None:
            count += 1
            logger.debug(f"Extracted device: {device.name} ({device.device_type})")
            yield device

    logger.info(f"Extracted {count} devices from diagram")
