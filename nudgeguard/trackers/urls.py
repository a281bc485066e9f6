"""URL helpers used by the trackers. None of these raise on bad input."""

from urllib.parse import parse_qs, urlsplit


def parse_domain_list(raw: str) -> list[str]:
    """Split a comma-separated settings value into normalized domains."""
    return [part.strip().lower().removeprefix("www.") for part in raw.split(",") if part.strip()]


def extract_domain(url: str) -> str:
    """Return the lowercase hostname without a leading ``www.``, or "" when unparseable."""
    if not url:
        return ""
    try:
        hostname = urlsplit(url).hostname
    except ValueError:
        return ""
    if not hostname:
        return ""
    return hostname.lower().removeprefix("www.")


def domain_matches(domain: str, monitored: list[str]) -> bool:
    """Monitored-domain predicate.

    An empty domain never matches. An empty monitored list matches every
    non-empty domain. Subdomains match their parent entry (``m.reddit.com``
    matches ``reddit.com``).
    """
    if not domain:
        return False
    if not monitored:
        return True
    return any(domain == entry or domain.endswith("." + entry) for entry in monitored)


def is_excluded(url: str, excluded: list[str]) -> bool:
    return any(site in url for site in excluded)


# Query parameters that identify a product page even on a shallow path.
PRODUCT_QUERY_KEYS = ("id", "sku", "product", "pid", "item", "model")


def product_path(url: str) -> str:
    """Path of ``url`` without a trailing slash, keeping the first product-id query token.

    ``https://shop.com/p?sku=42&ref=x`` becomes ``/p?sku=42``. Returns "" when unparseable.
    """
    if not url:
        return ""
    try:
        parts = urlsplit(url)
    except ValueError:
        return ""
    base = parts.path.rstrip("/")
    query = parse_qs(parts.query)
    for key in PRODUCT_QUERY_KEYS:
        values = query.get(key)
        if values and values[0]:
            return f"{base}?{key}={values[0]}"
    return base


def is_product_path(path: str) -> bool:
    """Deep paths (``/dp/B0..``) and paths carrying a product-id token look like product pages."""
    base, _, query = path.partition("?")
    if len([segment for segment in base.split("/") if segment]) >= 2:
        return True
    return query.split("=", 1)[0] in PRODUCT_QUERY_KEYS if query else False
