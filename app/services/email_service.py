"""
Transactional email through Resend's HTTP API.

Credentials come from the Resend connector when one is configured, fetched
on every send because connector keys expire; otherwise the static
RESEND_API_KEY is used. Sends never raise: they return
{"success": bool, "error": str | None}.
"""
from typing import Any, Dict, Iterable, Optional, Tuple

import httpx

from app.config import get_settings
from app.services.gateway import get_gateway
from app.utils.logger import get_logger
from app.utils.metrics import inc
from app.utils.templates import render

logger = get_logger("email")

RESEND_API_URL = "https://api.resend.com/emails"


class EmailNotConfigured(Exception):
    pass


async def fetch_credentials() -> Tuple[str, Optional[str]]:
    """(api_key, from_email). Never cached."""
    settings = get_settings()
    if settings.resend_connector_hostname and settings.resend_connector_token:
        async with httpx.AsyncClient(timeout=10.0) as client:
            resp = await client.get(
                f"https://{settings.resend_connector_hostname}/api/v2/connection",
                params={"include_secrets": "true", "connector_names": "resend"},
                headers={"Accept": "application/json", "X_REPLIT_TOKEN": settings.resend_connector_token},
            )
            resp.raise_for_status()
            items = resp.json().get("items") or []
        connection = (items[0] if items else {}).get("settings") or {}
        if not connection.get("api_key"):
            raise EmailNotConfigured("Resend connection has no API key")
        return connection["api_key"], connection.get("from_email")

    if settings.resend_api_key:
        return settings.resend_api_key, None
    raise EmailNotConfigured("No Resend credentials configured")


async def _post_email(api_key: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    async with httpx.AsyncClient() as client:
        resp = await client.post(
            RESEND_API_URL,
            headers={"Authorization": f"Bearer {api_key}"},
            json=payload,
        )
        resp.raise_for_status()
        return resp.json()


def _domain(email: str) -> str:
    return email.rpartition("@")[2]


async def send_email(to: str, subject: str, html: str) -> Dict[str, Any]:
    settings = get_settings()
    try:
        api_key, from_email = await fetch_credentials()
    except EmailNotConfigured as e:
        if settings.test_mode:
            logger.info("email.skipped", extra={"email_domain": _domain(to)})
            return {"success": True, "error": None}
        logger.error("email.not_configured", extra={"error": str(e)})
        return {"success": False, "error": str(e)}
    except httpx.HTTPError as e:
        logger.error("email.credentials_failed", extra={"error": str(e)[:200]})
        return {"success": False, "error": f"Could not load email credentials: {e}"}

    payload = {
        "from": from_email or settings.resend_fallback_from,
        "to": [to],
        "subject": subject,
        "html": html,
    }
    try:
        result = await get_gateway().execute("resend", _post_email, api_key, payload)
    except Exception as e:
        inc("email.failed")
        logger.error("email.send_failed", extra={"email_domain": _domain(to), "error": str(e)[:200]}, exc_info=True)
        return {"success": False, "error": str(e)}

    inc("email.sent")
    logger.info("email.sent", extra={"email_domain": _domain(to), "operation": subject})
    return {"success": True, "error": None, "id": result.get("id")}


async def send_magic_link_email(to: str, link: str) -> Dict[str, Any]:
    html = render(
        "email/magic_link.html",
        link=link, ttl_minutes=get_settings().magic_link_ttl_minutes,
    )
    return await send_email(to, "Your login link for Serious People", html)


async def send_plan_ready_email(to: str, client_name: str, plan_url: str, artifacts: Iterable,
                                primary_recommendation: Optional[str] = None,
                                bundle_pdf_url: Optional[str] = None) -> Dict[str, Any]:
    html = render(
        "email/plan_ready.html",
        client_name=client_name,
        plan_url=plan_url,
        artifacts=list(artifacts),
        primary_recommendation=primary_recommendation,
        bundle_pdf_url=bundle_pdf_url,
        support_email=get_settings().support_email,
    )
    return await send_email(to, f"{client_name}, your Serious Plan is ready", html)
