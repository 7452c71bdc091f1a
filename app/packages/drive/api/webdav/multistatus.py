"""WebDAV XML 文档渲染：multistatus 与 lockdiscovery。"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import Iterable, Optional
from urllib.parse import quote

from app.packages.drive.core.constants import DEFAULT_MIME_TYPE, WEBDAV_LOCK_TIMEOUT
from app.packages.drive.core.timezone import to_http_date
from app.packages.drive.models.file_node import FileNode

DAV_NS = "DAV:"
XML_CONTENT_TYPE = "application/xml; charset=utf-8"
STATUS_OK_LINE = "HTTP/1.1 200 OK"

ET.register_namespace("D", DAV_NS)


def _tag(name: str) -> str:
    return f"{{{DAV_NS}}}{name}"


def _text(parent: ET.Element, name: str, value: str) -> ET.Element:
    element = ET.SubElement(parent, _tag(name))
    element.text = value
    return element


def build_href(mount: str, path: str, *, collection: bool) -> str:
    """拼接 URL 编码后的 href；集合以斜杠结尾。"""
    path = path.rstrip("/")
    href = mount.rstrip("/") + quote(path, safe="/")
    return href + "/" if collection else href


def _append_response(
    root: ET.Element,
    href: str,
    *,
    display_name: str,
    node: Optional[FileNode],
) -> None:
    response = ET.SubElement(root, _tag("response"))
    _text(response, "href", href)
    propstat = ET.SubElement(response, _tag("propstat"))
    prop = ET.SubElement(propstat, _tag("prop"))

    _text(prop, "displayname", display_name)
    if node is not None and node.updated_at is not None:
        _text(prop, "getlastmodified", to_http_date(node.updated_at))

    resource_type = ET.SubElement(prop, _tag("resourcetype"))
    if node is None or node.is_directory:
        ET.SubElement(resource_type, _tag("collection"))
    else:
        if node.checksum:
            _text(prop, "getetag", f'"{node.checksum}"')
        _text(prop, "getcontenttype", node.mime_type or DEFAULT_MIME_TYPE)
        _text(prop, "getcontentlength", str(node.size))

    _text(propstat, "status", STATUS_OK_LINE)


def _serialize(root: ET.Element) -> bytes:
    return ET.tostring(root, encoding="utf-8", xml_declaration=True)


def render_multistatus(
    mount: str,
    path: str,
    target: Optional[FileNode],
    children: Iterable[FileNode] = (),
) -> bytes:
    """渲染 PROPFIND 结果：先是目标自身，随后是直接子节点。

    ``target`` 为 ``None`` 表示根目录。
    """
    root = ET.Element(_tag("multistatus"))
    is_collection = target is None or target.is_directory
    display_name = target.name if target is not None else "root"
    _append_response(
        root,
        build_href(mount, path, collection=is_collection),
        display_name=display_name,
        node=target,
    )

    base = path.rstrip("/")
    for child in children:
        _append_response(
            root,
            build_href(mount, f"{base}/{child.name}", collection=child.is_directory),
            display_name=child.name,
            node=child,
        )
    return _serialize(root)


def render_lock_discovery(lock_root: str, token: str, owner: Optional[str]) -> bytes:
    """渲染 LOCK 响应体。锁仅为建议性质，服务端不保存锁表。"""
    prop = ET.Element(_tag("prop"))
    discovery = ET.SubElement(prop, _tag("lockdiscovery"))
    active = ET.SubElement(discovery, _tag("activelock"))

    ET.SubElement(ET.SubElement(active, _tag("locktype")), _tag("write"))
    ET.SubElement(ET.SubElement(active, _tag("lockscope")), _tag("exclusive"))
    _text(active, "depth", "infinity")
    _text(ET.SubElement(active, _tag("owner")), "href", owner or "")
    _text(active, "timeout", WEBDAV_LOCK_TIMEOUT)
    _text(ET.SubElement(active, _tag("locktoken")), "href", token)
    _text(ET.SubElement(active, _tag("lockroot")), "href", lock_root)
    return _serialize(prop)
