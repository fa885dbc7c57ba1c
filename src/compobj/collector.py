"""HTTP fetch of reference content: plain URLs and the collector "safe" store."""

from __future__ import annotations

import logging

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from compobj.config import CompConfig
from compobj.errors import CompobjError

logger = logging.getLogger(__name__)

SAFE_SCHEME = "safe://"
DEFAULT_TIMEOUT = 30.0


class CollectorError(CompobjError):
    """Raised when reference content or metadata cannot be fetched."""


class SafeFileMeta(BaseModel):
    model_config = ConfigDict(extra="ignore")

    md5: str
    name: str = ""
    size: int = 0
    uploader: str = ""
    uploaded_date: str = ""


def is_safe_ref(ref: str) -> bool:
    return ref.startswith("safe")


def safe_id(ref: str) -> str:
    if ref.startswith(SAFE_SCHEME):
        return ref[len(SAFE_SCHEME) :]
    return ref.split(":", 1)[-1].lstrip("/")


def _collector_client(config: CompConfig) -> httpx.Client:
    if not config.collector_url:
        raise CollectorError("collector url is not set (OSVC_COMP_COLLECTOR_URL)")
    return httpx.Client(
        base_url=config.collector_url,
        auth=(config.collector_user, config.collector_password),
        timeout=DEFAULT_TIMEOUT,
        verify=config.tls_verify,
    )


def _get(client: httpx.Client, url: str) -> httpx.Response:
    try:
        resp = client.get(url)
        resp.raise_for_status()
    except httpx.HTTPError as e:
        raise CollectorError(f"get {url}: {e}") from e
    return resp


def safe_file_meta(ref: str, config: CompConfig) -> SafeFileMeta:
    """Fetch the metadata descriptor of a safe file."""
    with _collector_client(config) as client:
        resp = _get(client, f"/safe/{safe_id(ref)}")
    try:
        data = resp.json()
    except ValueError as e:
        raise CollectorError(f"safe file {ref}: invalid metadata: {e}") from e
    if isinstance(data, dict) and isinstance(data.get("data"), dict):
        data = data["data"]
    try:
        return SafeFileMeta.model_validate(data)
    except ValidationError as e:
        raise CollectorError(f"safe file {ref}: invalid metadata: {e}") from e


def get_file(ref: str, config: CompConfig) -> bytes:
    """Download reference content from a safe ref or a plain URL."""
    if is_safe_ref(ref):
        with _collector_client(config) as client:
            resp = _get(client, f"/safe/{safe_id(ref)}/download")
        return resp.content
    logger.debug(f"fetch {ref}")
    with httpx.Client(timeout=DEFAULT_TIMEOUT, verify=config.tls_verify, follow_redirects=True) as client:
        resp = _get(client, ref)
    return resp.content
