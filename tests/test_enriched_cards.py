"""Tests for attachment parsing and the enriched card aggregator."""

import base64
import logging
import os

import httpx
import pytest

from basecamp_client import BasecampClient
from conftest import recording_transport
from enriched_cards import (
    Attachment, download_attachment, format_enriched_card_as_text, get_enriched_card,
    get_image_url, parse_attachments,
)

SCREENSHOT = (
    '<bc-attachment sgid="BAh7CEkiCGdpZAY6" content-type="image/png" '
    'url="https://preview.3.basecamp.com/999/blobs/abc/previews/full" '
    'href="https://storage.3.basecamp.com/999/blobs/abc/download/screenshot.png" '
    'filename="screenshot.png" filesize="204800" width="1280" height="720" '
    'previewable="true" presentation="gallery"></bc-attachment>'
)


def image_tag(name, key, **extra):
    attrs = " ".join(f'{k}="{v}"' for k, v in extra.items())
    return (
        f'<bc-attachment sgid="sg-{key}" content-type="image/jpeg" '
        f'url="https://preview.3.basecamp.com/999/blobs/{key}/previews/full" '
        f'href="https://storage.3.basecamp.com/999/blobs/{key}/download/{name}" '
        f'filename="{name}" filesize="1024" {attrs}></bc-attachment>'
    )


# --- parse_attachments ---

def test_parse_attachment_reads_every_attribute():
    attachments = parse_attachments(f"<div>Look: {SCREENSHOT}</div>")
    assert attachments == [Attachment(
        sgid="BAh7CEkiCGdpZAY6",
        content_type="image/png",
        url="https://preview.3.basecamp.com/999/blobs/abc/previews/full",
        download_url="https://storage.3.basecamp.com/999/blobs/abc/download/screenshot.png",
        filename="screenshot.png",
        filesize=204800,
        previewable=True,
        width=1280,
        height=720,
        presentation="gallery",
    )]
    assert attachments[0].is_image


def test_parse_minimal_markup():
    html = ('<bc-attachment sgid="S1" content-type="image/png" url="https://p/x.png" '
            'href="https://s/x.png" filename="x.png" filesize="1024" width="10" height="20" '
            'previewable="true" presentation="gallery">')
    assert parse_attachments(html) == [Attachment(
        sgid="S1", content_type="image/png", url="https://p/x.png", download_url="https://s/x.png",
        filename="x.png", filesize=1024, previewable=True, width=10, height=20, presentation="gallery",
    )]


def test_parse_skips_attachment_missing_required_attribute():
    html = SCREENSHOT.replace('sgid="BAh7CEkiCGdpZAY6" ', "") + image_tag("b.jpg", "b")
    assert [a.filename for a in parse_attachments(html)] == ["b.jpg"]


def test_parse_keeps_dimensions_only_as_pair():
    [attachment] = parse_attachments(image_tag("w.jpg", "w", width="100"))
    assert attachment.width is None and attachment.height is None
    assert "width" not in attachment.to_dict()


@pytest.mark.parametrize("html", [None, "", "<p>No attachments here</p>"])
def test_parse_without_attachments(html):
    assert parse_attachments(html) == []


def test_to_dict_uses_camel_case_keys():
    [attachment] = parse_attachments(SCREENSHOT)
    data = attachment.to_dict()
    assert data["contentType"] == "image/png"
    assert data["downloadUrl"].endswith("/download/screenshot.png")
    assert (data["width"], data["height"], data["presentation"]) == (1280, 720, "gallery")


@pytest.mark.parametrize("quality, expected", [
    ("full", "https://storage.3.basecamp.com/999/blobs/abc/download/screenshot.png"),
    ("preview", "https://preview.3.basecamp.com/999/blobs/abc/previews/full"),
    ("thumbnail", "https://storage.3.basecamp.com/999/blobs/abc/previews/card"),
])
def test_get_image_url(quality, expected):
    [attachment] = parse_attachments(SCREENSHOT)
    assert get_image_url(attachment, quality) == expected


def test_thumbnail_without_download_segment_falls_back_to_preview():
    attachment = Attachment(sgid="s", content_type="image/png", url="https://p/x",
                            download_url="https://other/x.png", filename="x.png", filesize=1)
    assert get_image_url(attachment, "thumbnail") == "https://p/x"


# --- get_enriched_card ---

CARD = {
    "id": 300,
    "title": "Fix login",
    "description": f"<div>Broken {SCREENSHOT}</div>",
    "status": "active",
    "created_at": "2024-01-01T10:00:00Z",
    "updated_at": "2024-01-02T10:00:00Z",
    "creator": {"name": "Ana", "email_address": "ana@example.com"},
    "steps": [{"title": "Reproduce", "completed": True}],
    "assignees": [{"id": 7, "name": "Bo"}],
    "due_on": "2024-02-01",
    "bucket": {"id": 10, "name": "Website"},
    "parent": {"id": 20, "title": "In progress"},
}

COMMENTS = [
    {"id": 401, "creator": {"name": "Bo"}, "created_at": "2024-01-03T10:00:00Z",
     "content": f"<div>Also {image_tag('second.jpg', 'two')}</div>"},
    {"id": 402, "creator": {"name": "Ana"}, "created_at": "2024-01-04T10:00:00Z",
     "content": "<div>Thanks</div>"},
]


def basecamp_handler(download_status=None):
    download_status = download_status or {}

    def handler(request):
        path = request.url.path
        if path.endswith("/card_tables/cards/300.json"):
            return httpx.Response(200, json=CARD)
        if path.endswith("/recordings/300/comments.json"):
            return httpx.Response(200, json=COMMENTS)
        status = download_status.get(path, 200)
        if status != 200:
            return httpx.Response(status, text="Internal Server Error")
        return httpx.Response(200, content=f"bytes of {path}".encode())

    return handler


@pytest.mark.anyio
async def test_enriched_card_collects_card_then_comment_images(api_config):
    transport, requests = recording_transport(basecamp_handler())
    client = BasecampClient(api_config, transport=transport)

    context = await get_enriched_card(client, 10, 300)

    card = context["card"]
    assert card["project"] == {"id": 10, "name": "Website"}
    assert card["column"] == {"id": 20, "name": "In progress"}
    assert card["assignees"] == [{"id": 7, "name": "Bo"}]
    assert [c["id"] for c in context["comments"]] == [401, 402]
    assert context["comments"][0]["attachments"][0]["filename"] == "second.jpg"
    assert context["comments"][1]["attachments"] == []

    first, second = context["images"]
    assert (first["source"], first["sourceId"], first["creator"]) == ("card", 300, "Ana")
    assert first["metadata"] == {"filename": "screenshot.png", "size": 204800,
                                 "dimensions": {"width": 1280, "height": 720}}
    assert (second["source"], second["sourceId"], second["creator"]) == ("comment", 401, "Bo")
    assert "dimensions" not in second["metadata"]
    assert "base64" not in first and "base64" not in second
    assert len(requests) == 2


@pytest.mark.anyio
async def test_failed_image_download_does_not_fail_card(api_config, caplog):
    handler = basecamp_handler({"/999/blobs/two/previews/full": 500})
    transport, _ = recording_transport(handler)
    client = BasecampClient(api_config, transport=transport)

    with caplog.at_level(logging.WARNING):
        context = await get_enriched_card(client, 10, 300, download_images=True)

    first, second = context["images"]
    expected = base64.b64encode(b"bytes of /999/blobs/abc/previews/full").decode()
    assert first["base64"] == expected
    assert "base64" not in second
    assert "Failed to download image second.jpg" in caplog.text


@pytest.mark.anyio
async def test_thumbnail_quality_downloads_card_previews(api_config):
    transport, requests = recording_transport(basecamp_handler())
    client = BasecampClient(api_config, transport=transport)

    await get_enriched_card(client, 10, 300, download_images=True, image_quality="thumbnail")

    downloaded = sorted(r.url.path for r in requests[2:])
    assert downloaded == ["/999/blobs/abc/previews/card", "/999/blobs/two/previews/card"]


# --- text rendering ---

def test_format_minimal_card_omits_empty_sections():
    context = {
        "card": {
            "title": "Empty", "description": "", "status": "active", "created_at": "2024-01-01",
            "creator": {"name": "Ana", "email_address": "ana@example.com"}, "steps": [],
            "project": {"id": 1, "name": "Website"}, "column": {"id": 2, "name": "Todo"},
        },
        "comments": [],
        "images": [],
    }
    assert format_enriched_card_as_text(context) == (
        "# Card: Empty\n"
        "\n"
        "**Project:** Website\n"
        "**Column:** Todo\n"
        "**Status:** active\n"
        "**Created:** 2024-01-01\n"
        "**Creator:** Ana (ana@example.com)\n"
        "\n"
    )


@pytest.mark.anyio
async def test_format_full_card(api_config):
    transport, _ = recording_transport(basecamp_handler())
    context = await get_enriched_card(BasecampClient(api_config, transport=transport), 10, 300)

    text = format_enriched_card_as_text(context)

    assert text.startswith("# Card: Fix login\n\n**Project:** Website\n**Column:** In progress\n")
    assert "## Steps (1)\n\n1. ✅ Reproduce\n\n" in text
    assert "## Comments (2)\n\n### Comment 1 - Bo\n**Posted:** 2024-01-03T10:00:00Z\n\nAlso\n\n" in text
    assert "**Attachments (1):**\n- second.jpg (image/jpeg, 1.0KB)\n" in text
    assert "### Comment 2 - Ana\n**Posted:** 2024-01-04T10:00:00Z\n\nThanks\n\n" in text
    assert "## Image Attachments Summary\n\nTotal images: 2\n\n" in text
    assert "1. **screenshot.png**\n   From: card by Ana\n   Size: 1280x720px\n" in text
    assert "2. **second.jpg**\n   From: comment by Bo\n   URL: " in text


# --- download_attachment ---

@pytest.mark.anyio
async def test_download_attachment_saves_file(api_config, tmp_path):
    transport, requests = recording_transport(lambda r: httpx.Response(200, content=b"%PDF-1.4 data"))
    client = BasecampClient(api_config, transport=transport)

    result = await download_attachment(
        client, "https://storage.3.basecamp.com/999/blobs/k/download/report.pdf",
        filename="Q1 report (final).pdf", mime_type="application/pdf", save_dir=str(tmp_path),
    )

    assert result["filename"] == "Q1_report__final_.pdf"
    assert result["mimeType"] == "application/pdf"
    assert result["base64"] == base64.b64encode(b"%PDF-1.4 data").decode()
    assert result["savedPath"] == os.path.join(str(tmp_path), "Q1_report__final_.pdf")
    with open(result["savedPath"], "rb") as f:
        assert f.read() == b"%PDF-1.4 data"
    assert str(requests[0].url) == "https://3.basecampapi.com/999/blobs/k/download/report.pdf"


@pytest.mark.anyio
@pytest.mark.parametrize("filename", [None, "", ".", "..", "..."])
async def test_download_attachment_dot_names_fall_back(api_config, tmp_path, filename):
    transport, _ = recording_transport(lambda r: httpx.Response(200, content=b"data"))
    client = BasecampClient(api_config, transport=transport)

    result = await download_attachment(client, "https://example.com/f", filename=filename,
                                       save_dir=str(tmp_path))

    assert result["filename"] == "attachment"
    assert result["mimeType"] == "application/octet-stream"
    assert os.path.isfile(result["savedPath"])
