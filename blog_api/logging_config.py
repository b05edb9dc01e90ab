import logging

from blog_api.config import settings

_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    """
    Install a single stream handler on the root logger.

    Called once from the application lifespan.  Safe to call again (e.g.
    from scripts); the level is updated but no duplicate handler is added.
    """
    root = logging.getLogger()
    root.setLevel((level or settings.LOG_LEVEL).upper())
    if not any(getattr(h, "_blog_api", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        handler._blog_api = True
        root.addHandler(handler)

    # SQLAlchemy echoes through its own logger when DEBUG is on; keep it at
    # WARNING unless the app itself runs at DEBUG.
    if root.level > logging.DEBUG:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
