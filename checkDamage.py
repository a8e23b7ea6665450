#!/usr/bin/env python3

import argparse
import asyncio
import math
import sys

import requests
from tqdm import tqdm

from placedefender.canvas import DEFAULT_LAYOUT, CanvasFeed, CanvasFetchError, CanvasViewCache, decode_image
from placedefender.colors import PALETTES, get_palette
from placedefender.config import HTTP_TIMEOUT, ORDERS_URL
from placedefender.orders import parse_orders
from placedefender.reconcile import SelectionMode, damage_ratio, find_wrong_pixels


def fetchFinalCanvas(path):
    # [W, H, (RGBA)] of the whole canvas
    with open(path, "rb") as f:
        return decode_image(f.read())


def fetchOrders(url):
    r = requests.get(url, timeout=HTTP_TIMEOUT)
    r.raise_for_status()
    return parse_orders(r.json(), (DEFAULT_LAYOUT.max_x, DEFAULT_LAYOUT.max_y))


def localColorAt(canvas):
    async def color_at(x, y):
        if x >= canvas.shape[0] or y >= canvas.shape[1]:
            raise CanvasFetchError(f"({x}, {y}) is outside the {canvas.shape[0]}x{canvas.shape[1]} image")
        r, g, b, a = (int(v) for v in canvas[x, y])
        return r, g, b, a
    return color_at


async def getDiff(orders, color_at, catalog):
    wrong = await find_wrong_pixels(tqdm(orders, desc="checking"), color_at, catalog, SelectionMode.SAMPLE)
    print(f'Total Damage: {damage_ratio(wrong, orders):.1%}', len(wrong), len(orders))
    return wrong


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Report how much of the ordered image is currently wrong.")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--canvas", help="read the canvas from a local image (e.g. ./final_canvas.png)")
    source.add_argument("--token", help="bearer token used to read the live canvas")
    parser.add_argument("--orders-url", default=ORDERS_URL)
    parser.add_argument("--palette", choices=list(PALETTES), default="classic")
    args = parser.parse_args(argv)

    try:
        orders = fetchOrders(args.orders_url)
    except (requests.RequestException, ValueError) as err:
        print("Could not load placement orders:", err)
        return 1

    if args.canvas:
        try:
            color_at = localColorAt(fetchFinalCanvas(args.canvas))
        except (OSError, CanvasFetchError) as err:
            print("Could not read canvas image:", err)
            return 1
    else:
        # one consistent snapshot for the whole report
        color_at = CanvasViewCache(CanvasFeed(), lambda: args.token, stale_after=math.inf).color_at

    try:
        asyncio.run(getDiff(orders, color_at, get_palette(args.palette)))
    except (CanvasFetchError, ValueError) as err:
        print("Could not read the canvas:", err)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
