"""Uploader identity: a short, one-way hash of the client's network address."""
import hashlib
from typing import Optional

from fastapi import Request

from snapshare.config import settings

HASH_LENGTH = 16


def hash_address(raw_address: Optional[str]) -> str:
    """SHA-256 of the address, truncated to 16 hex chars.

    Truncation trades uniqueness for key size; collisions only merge two
    uploaders' quota buckets.
    """
    address = raw_address or "unknown"
    return hashlib.sha256(address.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def client_address(request: Request, trust_proxy_headers: Optional[bool] = None) -> str:
    """Best-effort client IP.

    Behind Cloudflare or a reverse proxy the forwarding headers carry the
    real address. Without one they are client-controlled, so only the
    socket peer is used.
    """
    if trust_proxy_headers is None:
        trust_proxy_headers = settings.TRUSTED_PROXY_HEADERS
    if trust_proxy_headers:
        return _forwarded_address(request) or _peer_address(request)
    return _peer_address(request)


def _forwarded_address(request: Request) -> Optional[str]:
    cf_ip = request.headers.get("cf-connecting-ip")
    if cf_ip:
        return cf_ip.strip()
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return None


def _peer_address(request: Request) -> str:
    if request.client and request.client.host:
        return request.client.host
    return "unknown"
