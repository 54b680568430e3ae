from __future__ import annotations

import logging

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=lvl, format=_FORMAT)
    root.setLevel(lvl)
    # httpx logs every request at INFO; keep it for DEBUG runs only.
    logging.getLogger("httpx").setLevel(max(lvl, logging.WARNING))
