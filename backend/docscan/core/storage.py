"""Object-storage file retrieval for uploaded documents."""

import logging
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

import httpx

from docscan.core.config import get_settings
from docscan.services.errors import FileRetrievalError

logger = logging.getLogger(__name__)


def file_name_from_reference(file_reference: str) -> str:
    path = urlparse(file_reference).path if "://" in file_reference else file_reference
    return unquote(path.rsplit("/", 1)[-1])


def file_extension(file_reference: Optional[str]) -> str:
    if not file_reference:
        return ""
    return Path(file_name_from_reference(file_reference)).suffix.lower()


def object_path_from_reference(file_reference: str, bucket: str) -> str:
    """Turn a storage URL or bare path into a bucket-relative object path.

    Accepted forms:
    - ``{supabase_url}/storage/v1/object/{bucket}/{path}`` (optionally ``public/`` or ``sign/``)
    - ``https://storage.googleapis.com/{bucket}/{path}``
    - ``{path}``
    """
    if "://" not in file_reference:
        return unquote(file_reference.lstrip("/"))

    path = urlparse(file_reference).path
    marker = "/storage/v1/object/"
    if marker in path:
        rest = path.split(marker, 1)[1]
        for prefix in ("public/", "sign/", "authenticated/"):
            if rest.startswith(prefix):
                rest = rest[len(prefix):]
                break
        if not rest.startswith(f"{bucket}/"):
            raise FileRetrievalError(f"Reference is outside bucket {bucket!r}")
        return unquote(rest[len(bucket) + 1:])

    if path.startswith(f"/{bucket}/"):
        return unquote(path[len(bucket) + 2:])

    raise FileRetrievalError(f"Unrecognised storage URL: {file_reference}")


def build_object_url(bucket: str, path: str) -> str:
    settings = get_settings()
    return f"{settings.supabase_url.rstrip('/')}/storage/v1/object/{bucket}/{path}"


async def fetch_bytes(file_reference: str) -> bytes:
    """Download an uploaded document.

    Raises ``FileRetrievalError`` when the reference is malformed, storage is not
    configured, or the object cannot be downloaded.
    """
    settings = get_settings()
    key = settings.supabase_service_role_key or settings.supabase_key
    if not settings.supabase_url or not key:
        raise FileRetrievalError("Supabase storage credentials are not configured")

    bucket = settings.storage_bucket
    object_path = object_path_from_reference(file_reference, bucket)
    if not object_path:
        raise FileRetrievalError("Empty object path")

    url = build_object_url(bucket, object_path)
    try:
        async with httpx.AsyncClient(timeout=settings.storage_timeout_seconds) as client:
            resp = await client.get(
                url,
                headers={"Authorization": f"Bearer {key}", "apikey": key},
            )
            resp.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning("Storage download failed for %s: %s", object_path, exc)
        raise FileRetrievalError(f"Could not download {object_path}") from exc

    return resp.content
