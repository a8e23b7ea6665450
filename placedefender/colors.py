from typing import Dict, Iterable, NamedTuple, Optional, Tuple

from PIL import ImageColor

# Capture and recompression can shift a pixel by a few levels per channel
# (#000000 is sometimes read back as #010100).
MATCH_TOLERANCE = 5


class Color(NamedTuple):
    id: int
    name: str
    rgb: Tuple[int, int, int]


def rgb_to_hex(rgb):
    return ("#%02x%02x%02x" % tuple(rgb[:3])).upper()


def hex_to_rgb(hex_color: str) -> Tuple[int, int, int]:
    return ImageColor.getcolor(hex_color, "RGB")


class ColorCatalog:
    """Ordered palette of placeable colors.

    Order matters only for approximate matching: when a sample is close
    enough to several entries, the earliest one wins.
    """

    def __init__(self, colors: Iterable[Color], tolerance: int = MATCH_TOLERANCE):
        self.colors: Tuple[Color, ...] = tuple(colors)
        self.tolerance = tolerance
        self._by_id: Dict[int, Color] = {}
        for color in self.colors:
            if color.id in self._by_id:
                raise ValueError(f"duplicate color id {color.id} ({color.name})")
            self._by_id[color.id] = color

    @classmethod
    def from_hex(cls, entries: Iterable[Tuple[str, int, str]], **kwargs) -> "ColorCatalog":
        return cls((Color(color_id, name, hex_to_rgb(hex_color)) for hex_color, color_id, name in entries), **kwargs)

    def __len__(self):
        return len(self.colors)

    def __iter__(self):
        return iter(self.colors)

    def by_id(self, color_id: int) -> Optional[Color]:
        return self._by_id.get(color_id)

    def closest(self, r: int, g: int, b: int) -> Optional[Color]:
        """First color within Manhattan distance `tolerance` of (r, g, b), or None."""
        for color in self.colors:
            cr, cg, cb = color.rgb
            if abs(cr - int(r)) + abs(cg - int(g)) + abs(cb - int(b)) <= self.tolerance:
                return color
        return None


CLASSIC_PALETTE = ColorCatalog.from_hex([
    ("#BE0039",  1, "dark red"),
    ("#FF4500",  2, "red"),
    ("#FFA800",  3, "orange"),
    ("#FFD635",  4, "yellow"),
    ("#00A368",  6, "dark green"),
    ("#00CC78",  7, "green"),
    ("#7EED56",  8, "light green"),
    ("#00756F",  9, "dark teal"),
    ("#009EAA", 10, "teal"),
    ("#2450A4", 12, "dark blue"),
    ("#3690EA", 13, "blue"),
    ("#51E9F4", 14, "light blue"),
    ("#493AC1", 15, "indigo"),
    ("#6A5CFF", 16, "periwinkle"),
    ("#811E9F", 18, "dark purple"),
    ("#B44AC0", 19, "purple"),
    ("#FF3881", 22, "pink"),
    ("#FF99AA", 23, "light pink"),
    ("#6D482F", 24, "dark brown"),
    ("#9C6926", 25, "brown"),
    ("#000000", 27, "black"),
    ("#898D90", 29, "gray"),
    ("#D4D7D9", 30, "light gray"),
    ("#FFFFFF", 31, "white"),
])

EXTENDED_PALETTE = ColorCatalog.from_hex([
    ("#6D001A",  0, "burgundy"),
    ("#BE0039",  1, "dark red"),
    ("#FF4500",  2, "red"),
    ("#FFA800",  3, "orange"),
    ("#FFD635",  4, "yellow"),
    ("#FFF8B8",  5, "pale yellow"),
    ("#00A368",  6, "dark green"),
    ("#00CC78",  7, "green"),
    ("#7EED56",  8, "light green"),
    ("#00756F",  9, "dark teal"),
    ("#009EAA", 10, "teal"),
    ("#00CCC0", 11, "light teal"),
    ("#2450A4", 12, "dark blue"),
    ("#3690EA", 13, "blue"),
    ("#51E9F4", 14, "light blue"),
    ("#493AC1", 15, "indigo"),
    ("#6A5CFF", 16, "periwinkle"),
    ("#94B3FF", 17, "lavender"),
    ("#811E9F", 18, "dark purple"),
    ("#B44AC0", 19, "purple"),
    ("#E4ABFF", 20, "pale purple"),
    ("#DE107F", 21, "magenta"),
    ("#FF3881", 22, "pink"),
    ("#FF99AA", 23, "light pink"),
    ("#6D482F", 24, "dark brown"),
    ("#9C6926", 25, "brown"),
    ("#FFB470", 26, "beige"),
    ("#000000", 27, "black"),
    ("#515252", 28, "dark gray"),
    ("#898D90", 29, "gray"),
    ("#D4D7D9", 30, "light gray"),
    ("#FFFFFF", 31, "white"),
])

PALETTES: Dict[str, ColorCatalog] = {
    "classic": CLASSIC_PALETTE,
    "extended": EXTENDED_PALETTE,
}


def get_palette(name: str) -> ColorCatalog:
    palette = PALETTES.get(name)
    if palette is None:
        raise KeyError(f"Unknown palette {name!r}, must be one of {list(PALETTES)}")
    return palette
