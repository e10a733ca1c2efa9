"""Shared helpers for the end-to-end websocket tests."""

import logging

logging.getLogger("asyncio").setLevel(logging.ERROR)
