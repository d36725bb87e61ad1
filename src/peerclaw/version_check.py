"""Remote version check.

Changes:
  - 2026-02-26: Mismatch stops the agent instead of printing a notice.
  - 2026-02-20: Initial implementation, adapted from the startup update check.

Peers are expected to run the same release. A deployment publishes
``{"version": "x.y.z"}`` at ``Settings.version_url``; an agent that sees a
different version stops cleanly so its supervisor can restart it on the new code.
"""

import logging
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)


@dataclass
class VersionInfo:
    current: str
    remote: str

    @property
    def mismatch(self) -> bool:
        return self.remote.strip() != self.current.strip()


async def fetch_remote_version(
    url: str,
    current_version: str,
    timeout: float = 15.0,
    client: httpx.AsyncClient | None = None,
) -> VersionInfo | None:
    """Fetch the published version. Returns None on any network or parse error.

    Never raises: a failed check is retried on the next cycle.
    """
    if not url:
        return None
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=timeout) as owned:
                resp = await owned.get(url, headers={"Accept": "application/json"})
        else:
            resp = await client.get(url, headers={"Accept": "application/json"}, timeout=timeout)
        resp.raise_for_status()
        remote = resp.json().get("version")
    except (httpx.HTTPError, ValueError, AttributeError):
        logger.debug("Version check failed (network or parse error)", exc_info=True)
        return None
    if not isinstance(remote, str) or not remote:
        logger.debug("Version document at %s has no version field", url)
        return None
    return VersionInfo(current=current_version, remote=remote)
