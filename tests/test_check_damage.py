"""Tests for the one-shot damage report."""

from unittest.mock import MagicMock, patch

import pytest
from PIL import Image

import checkDamage
from conftest import RED, WHITE
from placedefender.canvas import CanvasFetchError


@pytest.fixture
def canvas_png(tmp_path):
    img = Image.new("RGBA", (3, 3), WHITE)
    img.putpixel((1, 1), RED)
    path = tmp_path / "final_canvas.png"
    img.save(path)
    return path


def _orders(payload):
    response = MagicMock()
    response.json.return_value = payload
    return response


@pytest.mark.asyncio
async def test_local_color_at(canvas_png):
    color_at = checkDamage.localColorAt(checkDamage.fetchFinalCanvas(canvas_png))

    assert await color_at(1, 1) == RED
    assert await color_at(0, 2) == WHITE
    with pytest.raises(CanvasFetchError):
        await color_at(3, 0)


def test_reports_damage_from_local_canvas(canvas_png, capsys):
    # (1, 1) is red as ordered; (0, 0) is white but should be black
    with patch("checkDamage.requests.get", return_value=_orders([[1, 1, 2], [0, 0, 27]])):
        assert checkDamage.main(["--canvas", str(canvas_png)]) == 0

    assert "Total Damage: 50.0% 1 2" in capsys.readouterr().out


def test_order_outside_the_image_fails(canvas_png, capsys):
    with patch("checkDamage.requests.get", return_value=_orders([[5, 5, 2]])):
        assert checkDamage.main(["--canvas", str(canvas_png)]) == 1

    assert "Could not read the canvas" in capsys.readouterr().out


def test_missing_canvas_file(tmp_path, capsys):
    with patch("checkDamage.requests.get", return_value=_orders([[1, 1, 2]])):
        assert checkDamage.main(["--canvas", str(tmp_path / "missing.png")]) == 1

    assert "Could not read canvas image" in capsys.readouterr().out
