import enum
import logging
from typing import Awaitable, Callable, Iterable, List, NamedTuple, Optional, Sequence, Tuple

from placedefender.colors import Color, ColorCatalog, rgb_to_hex
from placedefender.orders import Order

logger = logging.getLogger(__name__)

ColorAt = Callable[[int, int], Awaitable[Tuple[int, int, int, int]]]


class SelectionMode(enum.Enum):
    SCAN_FIRST = "scan-first"
    SAMPLE = "sample"


class WrongPixel(NamedTuple):
    x: int
    y: int
    observed: Optional[Color]  # None = no palette color is close enough
    desired: Color


async def find_wrong_pixels(
    orders: Iterable[Order],
    color_at: ColorAt,
    catalog: ColorCatalog,
    mode: SelectionMode = SelectionMode.SCAN_FIRST,
) -> List[WrongPixel]:
    """Compare the live canvas against `orders`.

    SCAN_FIRST returns at most one pixel, the earliest wrong order, and stops
    sampling there. SAMPLE returns every wrong pixel. Errors raised by
    `color_at` propagate; there is no partial result.
    """
    wrong = []
    for order in orders:
        desired = catalog.by_id(order.color_id)
        if desired is None:
            logger.warning("Order at (%d,%d) wants unknown color id %d, skipping.",
                           order.x, order.y, order.color_id)
            continue

        r, g, b, _ = await color_at(order.x, order.y)
        observed = catalog.closest(r, g, b)
        if observed is not None and observed.id == desired.id:
            continue

        if observed is None:
            logger.debug("Pixel at (%d,%d) has undefined color (%s), needs to be %s.",
                         order.x, order.y, rgb_to_hex((r, g, b)), desired.name)
        else:
            logger.debug("Pixel at (%d,%d) is %s but needs to be %s.",
                         order.x, order.y, observed.name, desired.name)

        wrong.append(WrongPixel(order.x, order.y, observed, desired))
        if mode is SelectionMode.SCAN_FIRST:
            break
    return wrong


def damage_ratio(wrong: Sequence[WrongPixel], orders: Sequence[Order]) -> float:
    if not orders:
        return 0.0
    return len(wrong) / len(orders)
