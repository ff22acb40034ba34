"""
REST client for the server repository's extension endpoints.

Server installations do not report extension names through the engine.
The registry listing (``/qrs/extension/full``) carries only repository
records, so the human-readable name is read from each extension's
``.qext`` file.
"""

from __future__ import annotations

import logging
import secrets
import string
from typing import Optional
from urllib.parse import urljoin

import requests

from .errors import NotFoundError

logger = logging.getLogger(__name__)

_XRF_ALPHABET = string.ascii_letters + string.digits


def _xrf_key() -> str:
    return "".join(secrets.choice(_XRF_ALPHABET) for _ in range(16))


class RepositoryClient:
    """Minimal synchronous repository client.

    Args:
        base_url: Server base URL, e.g. ``https://bi.example.com``.
        prefix: Virtual proxy prefix, prepended to repository calls.
        session: Optional pre-configured ``requests.Session`` (auth).
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str,
        prefix: str = "",
        session: Optional[requests.Session] = None,
        timeout: int = 30,
    ):
        base = base_url.rstrip("/")
        if base and not base.startswith(("http://", "https://")):
            base = "https://" + base
        self.base_url = base
        self.prefix = prefix.strip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    def url(self, path: str, apply_prefix: bool = False) -> str:
        """Build an absolute URL; repository paths get the proxy prefix."""
        if (apply_prefix or path.startswith("/qrs")) and self.prefix:
            path = f"/{self.prefix}/{path.lstrip('/')}"
        return urljoin(self.base_url + "/", path.lstrip("/"))

    def get_json(self, path: str, apply_prefix: bool = False):
        key = _xrf_key()
        resp = self.session.get(
            self.url(path, apply_prefix),
            params={"xrfkey": key},
            headers={"X-Qlik-Xrfkey": key},
            timeout=self.timeout,
        )
        if resp.status_code == 404:
            raise NotFoundError(f"Repository resource not found: {path}")
        resp.raise_for_status()
        return resp.json()

    def list_extensions(self) -> list[dict]:
        """Return registry records keyed the way the engine reports them.

        In the registry ``id`` is the repository id and ``name`` is the
        extension id, so the keys are swapped: ``uuid`` keeps the
        repository id and ``id`` becomes the extension id.
        """
        records = self.get_json("/qrs/extension/full")
        result = []
        for rec in records:
            rec = dict(rec)
            rec["uuid"] = rec.get("id")
            rec["id"] = rec.get("name")
            result.append(rec)
        logger.debug("Repository lists %d extension(s)", len(result))
        return result

    def fetch_qext(self, record: dict) -> dict:
        """Fetch and return the ``.qext`` metadata of one registry record.

        Raises:
            NotFoundError: If the record references no ``.qext`` file.
        """
        for ref in record.get("references", []) or []:
            path = ref.get("logicalPath", "")
            if path.endswith(".qext"):
                return self.get_json(path, apply_prefix=True)
        raise NotFoundError(f"Extension '{record.get('id')}' has no .qext file")
