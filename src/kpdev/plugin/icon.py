# src/kpdev/plugin/icon.py
"""Default plugin icon, used when a project ships no icon.png."""

from pathlib import Path

from PIL import Image

ICON_SIZE = 56
CORNER_RADIUS = 8


def render_default_icon() -> Image.Image:
    """56x56 blue gradient with transparent rounded corners."""
    img = Image.new("RGBA", (ICON_SIZE, ICON_SIZE))
    pixels = img.load()

    for y in range(ICON_SIZE):
        for x in range(ICON_SIZE):
            pixels[x, y] = (70 + y, 130 + y // 2, 220, 255)

    last = ICON_SIZE - 1
    transparent = (0, 0, 0, 0)
    for y in range(CORNER_RADIUS):
        for x in range(CORNER_RADIUS):
            dx = CORNER_RADIUS - x - 1
            dy = CORNER_RADIUS - y - 1
            if dx * dx + dy * dy > CORNER_RADIUS * CORNER_RADIUS:
                pixels[x, y] = transparent
                pixels[last - x, y] = transparent
                pixels[x, last - y] = transparent
                pixels[last - x, last - y] = transparent

    return img


def write_default_icon(path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    render_default_icon().save(path, format="PNG")
    return path
