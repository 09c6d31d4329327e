from __future__ import annotations
import logging
from rich.console import Console
from rich.logging import RichHandler

console = Console(stderr=True)

def configure_logging(level: str = "INFO") -> None:
    """Route all poolwatch loggers through a single rich handler."""
    logging.basicConfig(
        level=level.upper(),
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # per-frame websocket chatter is only useful when debugging the transport
    logging.getLogger("websockets").setLevel(max(logging.getLogger().level, logging.INFO))
    logging.getLogger("httpx").setLevel(logging.WARNING)
