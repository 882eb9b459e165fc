"""
HLS playlist rewriting.

Playlists are treated as line-oriented text. Every media, key and nested
playlist reference is resolved against the playlist's own URL and re-emitted
as a relay reference so the browser fetches it through the relay too.
"""
import logging
import re
from typing import Optional
from urllib.parse import quote, urljoin, urlparse

logger = logging.getLogger(__name__)

MANIFEST_CONTENT_TYPE = "application/vnd.apple.mpegurl"
MANIFEST_CACHE_CONTROL = "no-cache, no-store, must-revalidate"

URI_ATTRIBUTE = re.compile(r'URI="([^"]+)"')
URI_EXTENSION = re.compile(r"\.(ts|m3u8|m3u|mp4|m4s|aac|key)(\?|$)", re.IGNORECASE)


def resolve_url(uri: str, base_url: str) -> str:
    """Resolve a playlist reference the way a browser resolves a link."""
    if uri.startswith("http://") or uri.startswith("https://"):
        return uri
    try:
        base = urlparse(base_url)
        if uri.startswith("//"):
            return f"{base.scheme}:{uri}"
        if uri.startswith("/"):
            return f"{base.scheme}://{base.netloc}{uri}"
        return urljoin(base_url, uri)
    except ValueError as e:
        logger.error(f"Error resolving {uri!r} against {base_url!r}: {e}")
        return uri


def relay_reference(url: str, cookie: Optional[str] = None, relay_path: str = "/relay") -> str:
    """Build the relay URL that fetches ``url`` with ``cookie``."""
    reference = f"{relay_path}?url={quote(url, safe='')}"
    if cookie:
        reference += f"&cookie={quote(cookie, safe='')}"
    return reference


def is_relay_reference(uri: str, relay_path: str = "/relay", relay_base: str = "") -> bool:
    """
    True when ``uri`` already points at this relay.

    Only references to our own relay count. An upstream URL that merely has
    a /relay path of its own is still rewritten.
    """
    prefixes = [f"{relay_path}?"]
    if relay_base:
        prefixes.append(f"{relay_base.rstrip('/')}{relay_path}?")
    return uri.startswith(tuple(prefixes))


def is_uri_line(line: str) -> bool:
    """
    Decide whether a non-directive line is a URI.

    Any non-empty, non-comment line qualifies: some upstreams emit bare
    filenames without an extension. This over-approximates on nonstandard
    manifests that carry free text.
    """
    if not line or line.startswith("#"):
        return False
    if URI_EXTENSION.search(line) or "://" in line or line.startswith("/"):
        return True
    logger.debug(f"Treating bare playlist line as URI: {line!r}")
    return True


def _relay(uri: str, base_url: str, cookie: Optional[str], relay_path: str, relay_base: str) -> str:
    if is_relay_reference(uri, relay_path, relay_base):
        return uri
    return relay_reference(resolve_url(uri, base_url), cookie, relay_path)


def rewrite_playlist(
    content: str,
    base_url: str,
    cookie: Optional[str] = None,
    relay_path: str = "/relay",
    relay_base: str = "",
) -> str:
    """
    Rewrite every URI in an HLS playlist into a relay reference.

    Args:
        content: Playlist text as fetched from the upstream
        base_url: Final URL the playlist was fetched from
        cookie: Optional auth cookie to propagate onto every reference
        relay_path: Path of the relay endpoint
        relay_base: Absolute origin of the relay, when references may carry one

    Returns:
        The rewritten playlist. Blank lines and directives without a
        ``URI="..."`` attribute are preserved verbatim.
    """
    rewritten_lines = []

    for line in content.split("\n"):
        stripped = line.strip()

        if not stripped:
            rewritten_lines.append(line)
            continue

        if stripped.startswith("#"):
            # Only the quoted value changes, the rest of the tag is kept
            if 'URI="' in stripped:
                line = URI_ATTRIBUTE.sub(
                    lambda m: f'URI="{_relay(m.group(1), base_url, cookie, relay_path, relay_base)}"',
                    line,
                )
            rewritten_lines.append(line)
            continue

        if is_uri_line(stripped):
            rewritten_lines.append(_relay(stripped, base_url, cookie, relay_path, relay_base))
        else:
            rewritten_lines.append(line)

    return "\n".join(rewritten_lines)
