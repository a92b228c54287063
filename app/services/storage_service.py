"""
PDF object storage.

Rendered PDFs go to a public Supabase Storage bucket. Without Supabase
credentials (local development, tests) they are written under
LOCAL_PDF_DIR and served by the app at /files/pdfs/.
"""
import asyncio
from pathlib import Path

import httpx

from app.config import get_settings
from app.services.gateway import get_gateway
from app.utils.logger import logger

LOCAL_PDF_DIR = Path("./generated/pdfs")
LOCAL_PDF_ROUTE = "/files/pdfs"


def _supabase_configured() -> bool:
    settings = get_settings()
    return bool(settings.supabase_url and settings.supabase_service_role_key)


def public_url(object_path: str) -> str:
    settings = get_settings()
    return f"{settings.supabase_url}/storage/v1/object/public/{settings.pdf_storage_bucket}/{object_path}"


async def _put_object(object_path: str, data: bytes, content_type: str) -> None:
    settings = get_settings()
    url = f"{settings.supabase_url}/storage/v1/object/{settings.pdf_storage_bucket}/{object_path}"
    async with httpx.AsyncClient() as client:
        resp = await client.put(
            url,
            headers={
                "Authorization": f"Bearer {settings.supabase_service_role_key}",
                "Content-Type": content_type,
                # Re-rendering a PDF replaces the old object
                "x-upsert": "true",
            },
            content=data,
        )
        resp.raise_for_status()


def _write_local(object_path: str, data: bytes) -> None:
    path = LOCAL_PDF_DIR / object_path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


async def upload_pdf(object_path: str, data: bytes) -> str:
    """Store a PDF and return the URL it can be downloaded from"""
    if not _supabase_configured():
        await asyncio.to_thread(_write_local, object_path, data)
        logger.info("storage.saved_local", extra={"path": object_path, "count": len(data)})
        return f"{get_settings().base_url}{LOCAL_PDF_ROUTE}/{object_path}"

    await get_gateway().execute("supabase_storage", _put_object, object_path, data, "application/pdf")
    logger.info("storage.uploaded", extra={"path": object_path, "count": len(data)})
    return public_url(object_path)
