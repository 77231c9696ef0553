import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from rich.console import Console
from rich.logging import RichHandler


class StructuredLogger:
    """Logger that writes either rich console lines or JSON records.

    Keyword arguments passed to the log methods are rendered as context,
    e.g. ``logger.info("Executing node", node_id="n1")``. Registered
    secrets are redacted from messages and context values.
    """

    def __init__(self, structured: bool = False, level: str = "INFO"):
        self._secrets = set()
        self.logger = logging.getLogger("packflow")
        self.configure(structured=structured, level=level)

    def configure(self, structured: bool = False, level: str = "INFO") -> None:
        """(Re)configure output mode and level in place."""
        self.structured = structured
        self.level = getattr(logging, level.upper(), logging.INFO)

        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)

        if self.structured:
            handler: logging.Handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(logging.Formatter("%(message)s"))
        else:
            handler = RichHandler(
                rich_tracebacks=True,
                markup=False,
                show_path=False,
                console=Console(stderr=True),
            )
            handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

        self.logger.addHandler(handler)
        self.logger.setLevel(self.level)
        self.logger.propagate = False

    def register_secret(self, secret: str):
        """Register a secret string to be redacted from logs."""
        if secret and isinstance(secret, str) and len(secret.strip()) > 0:
            self._secrets.add(secret)

    def _redact(self, text: str) -> str:
        if not text or not self._secrets:
            return text

        for secret in self._secrets:
            if secret in text:
                text = text.replace(secret, "[REDACTED]")
        return text

    def bind(self, **context) -> "BoundLogger":
        """Return a logger that adds ``context`` to every record."""
        return BoundLogger(self, context)

    def info(self, message: str, **kwargs):
        self._log("INFO", message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log("WARNING", message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log("ERROR", message, **kwargs)

    def debug(self, message: str, **kwargs):
        self._log("DEBUG", message, **kwargs)

    def _log(self, level: str, message: str, **kwargs):
        level_val = getattr(logging, level, logging.INFO)
        if level_val < self.level:
            return

        message = self._redact(str(message))
        context = {
            k: self._redact(v) if isinstance(v, str) else v for k, v in kwargs.items()
        }

        if self.structured:
            log_entry = {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "level": level,
                "message": message,
                **context,
            }
            self.logger.log(level_val, json.dumps(log_entry, default=str))
            return

        context_str = ""
        if context:
            context_items = [f"{k}={v}" for k, v in context.items()]
            context_str = f" ({', '.join(context_items)})"

        self.logger.log(level_val, f"{message}{context_str}")


class BoundLogger:
    """Thin view over a StructuredLogger carrying fixed context."""

    def __init__(self, parent: StructuredLogger, context: Dict[str, Any]):
        self._parent = parent
        self._context = context

    def bind(self, **context) -> "BoundLogger":
        return BoundLogger(self._parent, {**self._context, **context})

    def info(self, message: str, **kwargs):
        self._parent.info(message, **{**self._context, **kwargs})

    def warning(self, message: str, **kwargs):
        self._parent.warning(message, **{**self._context, **kwargs})

    def error(self, message: str, **kwargs):
        self._parent.error(message, **{**self._context, **kwargs})

    def debug(self, message: str, **kwargs):
        self._parent.debug(message, **{**self._context, **kwargs})


# Global instance; configure_logging() mutates it so module-level imports stay valid
logger = StructuredLogger()


def configure_logging(structured: bool, level: str, secrets: Optional[list] = None):
    """Configure the global logger."""
    logger.configure(structured=structured, level=level)
    for secret in secrets or []:
        logger.register_secret(secret)
