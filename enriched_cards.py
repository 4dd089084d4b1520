"""
Enriched card context: a card together with its full comment thread and
the image attachments embedded in the card description and comments.

Attachments are `<bc-attachment ...>` elements inside the rich-text HTML
Basecamp returns for descriptions and comment bodies.
"""

import base64
import logging
import math
import os
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import anyio
import httpx

from basecamp_client import BasecampClient
from basecamp_errors import BasecampError

logger = logging.getLogger(__name__)

IMAGE_QUALITIES = ("full", "preview", "thumbnail")

ATTACHMENT_RE = re.compile(r'<bc-attachment\s+([^>]+)>')
_ATTRIBUTE_RES = {
    "sgid": re.compile(r'sgid="([^"]+)"'),
    "content_type": re.compile(r'content-type="([^"]+)"'),
    "url": re.compile(r'url="([^"]+)"'),
    "href": re.compile(r'href="([^"]+)"'),
    "filename": re.compile(r'filename="([^"]+)"'),
    "filesize": re.compile(r'filesize="(\d+)"'),
    "width": re.compile(r'width="(\d+)"'),
    "height": re.compile(r'height="(\d+)"'),
    "previewable": re.compile(r'previewable="(true|false)"'),
    "presentation": re.compile(r'presentation="([^"]+)"'),
}
_REQUIRED = ("sgid", "content_type", "url", "href", "filename", "filesize")
_TAG_RE = re.compile(r'<[^>]*>')
_DOWNLOAD_SUFFIX_RE = re.compile(r'/download/[^/]+$')
_UNSAFE_FILENAME_RE = re.compile(r'[^a-zA-Z0-9._-]')


@dataclass(frozen=True)
class Attachment:
    sgid: str
    content_type: str
    url: str
    download_url: str
    filename: str
    filesize: int
    previewable: bool = False
    width: Optional[int] = None
    height: Optional[int] = None
    presentation: Optional[str] = None

    @property
    def is_image(self) -> bool:
        return self.content_type.startswith("image/")

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "sgid": self.sgid,
            "contentType": self.content_type,
            "url": self.url,
            "downloadUrl": self.download_url,
            "filename": self.filename,
            "filesize": self.filesize,
            "previewable": self.previewable,
        }
        if self.width is not None and self.height is not None:
            data["width"] = self.width
            data["height"] = self.height
        if self.presentation:
            data["presentation"] = self.presentation
        return data


def parse_attachments(html: Optional[str]) -> List[Attachment]:
    """
    Extract `<bc-attachment>` elements from rich-text HTML.

    Elements missing sgid, content-type, url, href, filename or a numeric
    filesize are skipped. Width and height are kept only as a pair.
    """
    attachments = []
    for match in ATTACHMENT_RE.finditer(html or ""):
        attrs = match.group(1)
        found = {}
        for key, pattern in _ATTRIBUTE_RES.items():
            attr_match = pattern.search(attrs)
            if attr_match:
                found[key] = attr_match.group(1)
        if not all(found.get(key) for key in _REQUIRED):
            continue

        has_dimensions = "width" in found and "height" in found
        attachments.append(Attachment(
            sgid=found["sgid"],
            content_type=found["content_type"],
            url=found["url"],
            download_url=found["href"],
            filename=found["filename"],
            filesize=int(found["filesize"]),
            previewable=found.get("previewable") == "true",
            width=int(found["width"]) if has_dimensions else None,
            height=int(found["height"]) if has_dimensions else None,
            presentation=found.get("presentation"),
        ))
    return attachments


def get_image_url(attachment: Attachment, quality: str = "preview") -> str:
    """Pick the URL to fetch for an image at the requested quality tier."""
    if quality == "full":
        return attachment.download_url
    if quality == "thumbnail":
        # .../blobs/<key>/download/<name> -> .../blobs/<key>/previews/card
        if "/download/" in attachment.download_url:
            return _DOWNLOAD_SUFFIX_RE.sub("/previews/card", attachment.download_url)
        return attachment.url
    return attachment.url


def _image_entry(attachment: Attachment, source: str, source_id: Any, creator: Optional[str]) -> Dict[str, Any]:
    metadata = {"filename": attachment.filename, "size": attachment.filesize}
    if attachment.width and attachment.height:
        metadata["dimensions"] = {"width": attachment.width, "height": attachment.height}
    return {
        "url": attachment.url,
        "source": source,
        "sourceId": source_id,
        "creator": creator,
        "metadata": metadata,
        "mimeType": attachment.content_type,
        "downloadUrl": attachment.download_url,
    }


async def get_enriched_card(client: BasecampClient, project_id, card_id,
                            download_images: bool = False,
                            image_quality: str = "preview") -> Dict[str, Any]:
    """
    Build the enriched context for one card.

    Args:
        client: BasecampClient
        project_id: Project (bucket) ID
        card_id: Card ID
        download_images: Embed each image as base64 under `base64`
        image_quality: 'full', 'preview' (default) or 'thumbnail'

    Returns:
        dict: {"card": {...}, "comments": [...], "images": [...]}
    """
    card = await client.get(f"/buckets/{project_id}/card_tables/cards/{card_id}.json")
    comments = await client.get_all_pages(f"/buckets/{project_id}/recordings/{card_id}/comments.json")

    description = card.get("description") or card.get("content") or ""
    card_creator = card.get("creator") or {}

    enriched_comments = []
    pending = []
    for attachment in parse_attachments(description):
        if attachment.is_image:
            pending.append((attachment, _image_entry(attachment, "card", card.get("id"), card_creator.get("name"))))

    for comment in comments:
        attachments = parse_attachments(comment.get("content"))
        creator = comment.get("creator") or {}
        enriched_comments.append({
            "id": comment.get("id"),
            "creator": creator,
            "created_at": comment.get("created_at"),
            "content": comment.get("content") or "",
            "attachments": [attachment.to_dict() for attachment in attachments],
        })
        for attachment in attachments:
            if attachment.is_image:
                pending.append((attachment, _image_entry(attachment, "comment", comment.get("id"), creator.get("name"))))

    if download_images and pending:
        async def fetch(attachment: Attachment, image: Dict[str, Any]) -> None:
            try:
                image["base64"] = await client.download_binary(get_image_url(attachment, image_quality))
            except (BasecampError, httpx.HTTPError) as e:
                logger.warning(f"Failed to download image {attachment.filename}: {e}")

        async with anyio.create_task_group() as tg:
            for attachment, image in pending:
                tg.start_soon(fetch, attachment, image)

    bucket = card.get("bucket") or {}
    parent = card.get("parent") or {}
    return {
        "card": {
            "id": card.get("id"),
            "title": card.get("title"),
            "description": description,
            "status": card.get("status"),
            "created_at": card.get("created_at"),
            "updated_at": card.get("updated_at"),
            "creator": card_creator,
            "steps": card.get("steps") or [],
            "assignees": card.get("assignees") or [],
            "due_on": card.get("due_on"),
            "project": {"id": bucket.get("id"), "name": bucket.get("name")},
            "column": {"id": parent.get("id"), "name": parent.get("title")},
        },
        "comments": enriched_comments,
        "images": [image for _, image in pending],
    }


def format_enriched_card_as_text(context: Dict[str, Any]) -> str:
    """Render an enriched card as Markdown-ish text for LLM consumption."""
    card = context["card"]
    creator = card.get("creator") or {}
    lines = [
        f"# Card: {card.get('title')}",
        "",
        f"**Project:** {card['project'].get('name')}",
        f"**Column:** {card['column'].get('name')}",
        f"**Status:** {card.get('status')}",
        f"**Created:** {card.get('created_at')}",
        f"**Creator:** {creator.get('name')} ({creator.get('email_address')})",
        "",
    ]

    if card.get("description"):
        lines += ["## Description", "", card["description"], ""]

    steps = card.get("steps") or []
    if steps:
        lines += [f"## Steps ({len(steps)})", ""]
        for idx, step in enumerate(steps, 1):
            glyph = "✅" if step.get("completed") else "⬜"
            lines.append(f"{idx}. {glyph} {step.get('title')}")
            if step.get("assignees"):
                names = ", ".join(person.get("name", "") for person in step["assignees"])
                lines.append(f"   Assigned to: {names}")
            if step.get("due_on"):
                lines.append(f"   Due: {step['due_on']}")
        lines.append("")

    comments = context.get("comments") or []
    if comments:
        lines += [f"## Comments ({len(comments)})", ""]
        for idx, comment in enumerate(comments, 1):
            lines.append(f"### Comment {idx} - {(comment.get('creator') or {}).get('name')}")
            lines += [f"**Posted:** {comment.get('created_at')}", ""]

            text = _TAG_RE.sub("", comment.get("content") or "").strip()
            if text:
                lines += [text, ""]

            attachments = comment.get("attachments") or []
            if attachments:
                lines.append(f"**Attachments ({len(attachments)}):**")
                for att in attachments:
                    lines.append(f"- {att['filename']} ({att['contentType']}, {att['filesize'] / 1024:.1f}KB)")
                    if att.get("width") and att.get("height"):
                        lines.append(f"  Size: {att['width']}x{att['height']}px")
                    lines.append(f"  Preview: {att['url']}")
                    lines.append(f"  Download: {att['downloadUrl']}")
                lines.append("")

    images = context.get("images") or []
    if images:
        lines += ["## Image Attachments Summary", "", f"Total images: {len(images)}", ""]
        for idx, image in enumerate(images, 1):
            lines.append(f"{idx}. **{image['metadata']['filename']}**")
            lines.append(f"   From: {image['source']} by {image['creator']}")
            dimensions = image["metadata"].get("dimensions")
            if dimensions:
                lines.append(f"   Size: {dimensions['width']}x{dimensions['height']}px")
            lines += [f"   URL: {image['url']}", ""]

    return "\n".join(lines) + "\n"


async def download_attachment(client: BasecampClient, url: str, filename: Optional[str] = None,
                              mime_type: Optional[str] = None,
                              save_dir: Optional[str] = None) -> Dict[str, Any]:
    """
    Download an attachment, keep a copy under .basecamp/images/ and return
    it base64-encoded alongside the saved path.
    """
    encoded = await client.download_binary(url)
    safe_name = _UNSAFE_FILENAME_RE.sub("_", filename or "")
    if not safe_name.strip("."):
        safe_name = "attachment"
    directory = anyio.Path(save_dir or os.path.join(os.getcwd(), ".basecamp", "images"))
    await directory.mkdir(parents=True, exist_ok=True)
    target = directory / safe_name
    await target.write_bytes(base64.b64decode(encoded))
    logger.info(f"Saved attachment to {target}")
    return {
        "filename": safe_name,
        "mimeType": mime_type or "application/octet-stream",
        "size": math.ceil(len(encoded) * 3 / 4),
        "base64": encoded,
        "savedPath": str(target),
    }
