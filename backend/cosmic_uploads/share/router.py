"""Share page for link unfurling (Discord, Slack, Twitter...).

``GET /file/{file_id}`` renders a tiny HTML page carrying Open Graph and
Twitter card tags, then redirects the browser to the frontend's file page.
It only reads metadata; the blob is never opened here.
"""
import html
import logging
import math

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, PlainTextResponse

from ..config import AppConfig
from ..storage.exceptions import FileExpired, FileNotFound
from ..storage.router import get_app_config, get_file_store
from ..storage.schemas import FileRecord
from ..storage.service import FileStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["share"])

_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta property="og:title" content="{title}" />
    <meta property="og:description" content="{description}" />
{image_tag}    <meta name="twitter:card" content="{card}" />
    <title>{title}</title>
    <meta http-equiv="refresh" content="0; url={redirect}" />
</head>
<body>
    Redirecting to file page...
</body>
</html>
"""


def describe(record: FileRecord, hours_left: int) -> str:
    """One-line summary used as the og:description."""
    size_mb = record.size / (1024 * 1024)
    return (
        f"File: {record.original_name} • Size: {size_mb:.2f} MB "
        f"• Expires in {hours_left}h"
    )


def render_share_page(
    record: FileRecord,
    hours_left: int,
    redirect_url: str,
    image_url: str = "",
) -> str:
    image_tag = ""
    if image_url:
        image_tag = f'    <meta property="og:image" content="{html.escape(image_url)}" />\n'
    return _PAGE.format(
        title=html.escape(record.original_name),
        description=html.escape(describe(record, hours_left)),
        image_tag=image_tag,
        card="summary_large_image" if image_url else "summary",
        redirect=html.escape(redirect_url),
    )


@router.get("/file/{file_id}", response_class=HTMLResponse)
async def share_page(
    request: Request,
    file_id: str,
    store: FileStore = Depends(get_file_store),
    config: AppConfig = Depends(get_app_config),
):
    """Render the embed page for a shared file."""
    try:
        record = await store.lookup(file_id)
    except FileExpired:
        return PlainTextResponse("File has expired", status_code=404)
    except FileNotFound:
        return PlainTextResponse("File not found", status_code=404)

    remaining = (store.expires_at(record) - store.now()).total_seconds()
    hours_left = max(1, math.ceil(remaining / 3600))

    image_url = ""
    if record.mime_type.lower().startswith("image/"):
        image_url = str(request.url_for("preview_file", file_id=record.id))

    redirect_url = f"{config.server.frontend_url}/file.html?id={record.id}"
    return HTMLResponse(render_share_page(record, hours_left, redirect_url, image_url))
