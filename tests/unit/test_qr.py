"""Tests for QR challenge rendering."""

import base64

import pytest

from session_gateway.infra.qr import render_qr_data_url

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


@pytest.mark.asyncio
async def test_renders_png_data_url() -> None:
    data_url = await render_qr_data_url("2@AbCdEf,ghIjKl,mnOpQr")

    prefix = "data:image/png;base64,"
    assert data_url.startswith(prefix)
    assert base64.b64decode(data_url[len(prefix):]).startswith(PNG_SIGNATURE)
