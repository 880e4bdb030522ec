import httpx

# Hop-by-hop headers that should NOT be forwarded (RFC 2616)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}


def strip_hop_by_hop(headers: httpx.Headers) -> httpx.Headers:
    """Return a copy of ``headers`` without hop-by-hop entries."""
    return httpx.Headers(
        [
            (name, value)
            for name, value in headers.multi_items()
            if name.lower() not in HOP_BY_HOP_HEADERS
        ]
    )
