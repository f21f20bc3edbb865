import json as _json
import logging
import sys
from datetime import datetime, timezone

_PLAIN = "%(asctime)s %(levelname)s %(name)s %(message)s"


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record: ts / level / logger / msg (+ exc)."""

    def format(self, record: logging.LogRecord) -> str:
        out = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            out["exc"] = self.formatException(record.exc_info)
        return _json.dumps(out, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", json: bool = False) -> None:
    """
    One stdout handler on the root logger, replaced on re-init.

    json=True switches to JsonLineFormatter for log shippers; medstock.*
    loggers follow the root level, SQL echo only at DEBUG.
    """
    lvl = level.upper()
    root = logging.getLogger()
    root.setLevel(lvl)

    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonLineFormatter() if json else logging.Formatter(_PLAIN))
    root.addHandler(handler)

    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if lvl == "DEBUG" else logging.WARNING
    )
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
