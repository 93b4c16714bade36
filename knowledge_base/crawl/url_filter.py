"""
URL normalization and same-domain filtering for traversal
"""

from typing import Optional, Tuple
from urllib.parse import urlparse, urlunparse, urljoin

from .config import CrawlerSettings

SKIPPED_SCHEMES = ('mailto:', 'tel:', 'javascript:', 'data:')

INVALID_EXTENSIONS = {
    '.jpg', '.jpeg', '.png', '.gif', '.bmp', '.svg', '.webp', '.ico',  # Images
    '.css', '.js',  # Stylesheets and scripts
    '.pdf', '.doc', '.docx', '.xls', '.xlsx', '.ppt', '.pptx',  # Documents
    '.zip', '.rar', '.tar', '.gz',  # Archives
    '.mp4', '.mp3', '.avi', '.mov', '.wmv',  # Media
    '.xml', '.json', '.rss'  # Data files
}

DEFAULT_PORTS = {'http': 80, 'https': 443}


def normalize_url(url: str) -> str:
    """Canonical form used for the visited set.

    Lowercases scheme and host, drops default ports, fragments and a
    trailing slash on non-root paths. The query string is kept.
    """
    parsed = urlparse(url.strip())
    scheme = parsed.scheme.lower()
    host = (parsed.hostname or '').lower()

    netloc = host
    if parsed.port and DEFAULT_PORTS.get(scheme) != parsed.port:
        netloc = f"{host}:{parsed.port}"
    if parsed.username:
        netloc = f"{parsed.username}@{netloc}"

    path = parsed.path or '/'
    if len(path) > 1 and path.endswith('/'):
        path = path.rstrip('/') or '/'

    return urlunparse((scheme, netloc, path, parsed.params, parsed.query, ''))


class UrlFilter:
    """Decides which discovered links are eligible for traversal"""

    def __init__(self, seed_url: str, settings: Optional[CrawlerSettings] = None):
        self.settings = settings or CrawlerSettings()
        self.seed_host = (urlparse(seed_url).hostname or '').lower()

    def resolve(self, href: str, base_url: str) -> Optional[str]:
        """Resolve an href found on base_url into an absolute URL"""
        href = (href or '').strip()
        if not href or href.startswith('#'):
            return None
        if href.lower().startswith(SKIPPED_SCHEMES):
            return None
        try:
            return urljoin(base_url, href)
        except ValueError:
            return None

    def should_follow(self, url: str) -> Tuple[bool, str]:
        """Determine if a link should be queued"""
        try:
            parsed = urlparse(url)
        except ValueError:
            return False, "invalid_url"

        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            return False, "unsupported_scheme"

        if len(url) > self.settings.max_url_length:
            return False, "url_too_long"

        if (parsed.hostname or '').lower() != self.seed_host:
            return False, "external_domain"

        path = parsed.path.lower()
        for ext in INVALID_EXTENSIONS:
            if path.endswith(ext):
                return False, f"non_html_extension: {ext}"

        return True, "passed_all_filters"
