from __future__ import annotations

import os
import pathlib
from typing import Any
from urllib.parse import urlparse

import httpx

from skitgen.errors import ProviderError, ValidationError


def fetch_asset(storage: Any, source: str, workdir: str, name: str) -> str:
    """Materialize ``source`` as a local file inside ``workdir``.

    Storage-owned URLs are read through the storage client, other http(s)
    URLs are streamed, and existing local paths are used in place.
    """
    candidate = (source or "").strip()
    if not candidate:
        raise ValidationError(f"Missing asset reference for {name}")
    suffix = pathlib.Path(urlparse(candidate).path).suffix or ".bin"
    target = os.path.join(workdir, f"{name}{suffix}")
    if storage is not None and storage.owns(candidate):
        pathlib.Path(target).write_bytes(storage.get(candidate))
        return target
    if candidate.lower().startswith(("http://", "https://")):
        timeout = httpx.Timeout(connect=10.0, read=120.0, write=10.0, pool=120.0)
        try:
            with httpx.stream("GET", candidate, timeout=timeout, follow_redirects=True) as resp:
                resp.raise_for_status()
                with open(target, "wb") as f:
                    for chunk in resp.iter_bytes():
                        if chunk:
                            f.write(chunk)
        except httpx.HTTPError as exc:
            raise ProviderError(f"Asset download failed for {name}: {exc}", provider="http") from exc
        return target
    if os.path.exists(candidate):
        return candidate
    raise ProviderError(f"Asset not reachable for {name}: {candidate}", provider="storage")
