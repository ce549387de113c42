"""
URL prefix detection for display (dashboard, status output).
Every function returns an http:// prefix and never raises.
"""
import ipaddress
import socket
from typing import Dict, Optional, Sequence

import httpx

from app_manager.config import EXTERNAL_IP_TIMEOUT

EXTERNAL_IP_SERVICES = (
    "https://api.ipify.org?format=text",
    "https://ifconfig.me/ip",
    "https://icanhazip.com",
)

LOOPBACK = "127.0.0.1"


def _is_ipv4(text: str) -> bool:
    try:
        return isinstance(ipaddress.ip_address(text), ipaddress.IPv4Address)
    except ValueError:
        return False


def local_ip() -> str:
    # connect() on UDP sends nothing; it only picks the outgoing interface
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("10.255.255.255", 1))
            ip = s.getsockname()[0]
            if ip and not ip.startswith("127."):
                return ip
    except OSError:
        pass
    try:
        ip = socket.gethostbyname(socket.gethostname())
        if ip and not ip.startswith("127."):
            return ip
    except OSError:
        pass
    return LOOPBACK


def network_url_prefix() -> str:
    return f"http://{local_ip()}"


def external_url_prefix(
    timeout: float = EXTERNAL_IP_TIMEOUT,
    services: Sequence[str] = EXTERNAL_IP_SERVICES,
    client: Optional[httpx.Client] = None,
) -> str:
    owns_client = client is None
    if client is None:
        client = httpx.Client(timeout=timeout, follow_redirects=True)
    try:
        for url in services:
            try:
                resp = client.get(url)
            except httpx.HTTPError:
                continue
            ip = resp.text.strip()
            if resp.status_code == 200 and _is_ipv4(ip):
                return f"http://{ip}"
    finally:
        if owns_client:
            client.close()
    return network_url_prefix()


def generic_url_prefix() -> str:
    return "http://localhost"


def build_app_url(prefix: str, port: Optional[int], base_path: Optional[str] = None) -> str:
    url = f"{prefix}:{port}" if port else prefix
    if base_path:
        url = f"{url}/{base_path.lstrip('/')}"
    return url


def detect_prefixes(external: bool = True, timeout: float = EXTERNAL_IP_TIMEOUT) -> Dict[str, str]:
    network = network_url_prefix()
    return {
        "local": generic_url_prefix(),
        "network": network,
        "external": external_url_prefix(timeout) if external else network,
    }
