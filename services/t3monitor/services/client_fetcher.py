"""Remote fetcher: pulls the raw status report from one client.

One authenticated GET per client and import pass, no retries; the next
scheduled pass is the retry.
"""

from urllib.parse import quote

import httpx

from t3monitor.config import settings
from t3monitor.logging_config import get_logger
from t3monitor.services.errors import EmptyResponseError, TransportError

logger = get_logger(__name__)


def unify_domain(domain: str, default_scheme: str | None = None) -> str:
    """Strip trailing slashes and add a scheme when the domain has none.

    An existing http:// or https:// prefix is kept as is.
    """
    domain = domain.rstrip("/")
    if not domain.startswith(("http://", "https://")):
        domain = (default_scheme or settings.importer.default_scheme) + domain
    return domain


def build_report_url(domain: str, secret: str) -> str:
    """Full URL of a client's status endpoint, secret included."""
    endpoint = settings.importer.endpoint_path
    if not endpoint.startswith("/"):
        endpoint = "/" + endpoint
    separator = "&" if "?" in endpoint else "?"
    return f"{unify_domain(domain)}{endpoint}{separator}secret={quote(secret, safe='')}"


class ClientFetcher:
    """Fetches status reports over HTTP.

    Holds one httpx.AsyncClient for the whole import pass. Pass `client`
    to supply a preconfigured one (e.g. with a mock transport).
    """

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=settings.importer.http_timeout_seconds,
            verify=settings.importer.verify_tls,
            follow_redirects=True,
        )

    async def fetch(self, domain: str, secret: str, *, label: str | None = None) -> bytes:
        """Return the raw report body.

        Raises TransportError on network failure or a non-2xx status and
        EmptyResponseError when the body is empty.
        """
        url = build_report_url(domain, secret)
        try:
            resp = await self._client.get(url)
        except httpx.TimeoutException as e:
            raise TransportError(f"Timeout while requesting {unify_domain(domain)}") from e
        except httpx.HTTPError as e:
            raise TransportError(str(e) or e.__class__.__name__) from e

        if not resp.is_success:
            raise TransportError(f"{resp.status_code} {resp.reason_phrase}".strip())

        if not resp.content.strip():
            raise EmptyResponseError(label or unify_domain(domain))

        logger.debug(
            "Client report fetched",
            domain=unify_domain(domain),
            size_bytes=len(resp.content),
        )
        return resp.content

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "ClientFetcher":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
