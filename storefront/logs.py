import logging

from rich.logging import RichHandler

from storefront.config import Config


def setup_logging(config: Config) -> None:
    """Route all loggers through rich. Safe to call more than once."""
    root = logging.getLogger()
    level = getattr(logging, config.log_level.upper(), logging.INFO)
    root.setLevel(level)
    if any(isinstance(h, RichHandler) for h in root.handlers):
        return
    handler = RichHandler(rich_tracebacks=config.debug, show_path=False)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    root.addHandler(handler)
