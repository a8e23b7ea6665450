from placedefender.config import VERSION as __version__
