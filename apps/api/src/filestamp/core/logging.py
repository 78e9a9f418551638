import logging
import re
import sys

from filestamp.core.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class PrivateKeyFilter(logging.Filter):
    """Mask anything shaped like a raw secp256k1 private key in log records."""

    PATTERNS = [
        (re.compile(r"(private[_-]?key[\"']?\s*[:=]\s*[\"']?)([^\"'}\s,]+)", re.IGNORECASE), r"\1***MASKED***"),
    ]

    def __init__(self, secret: str | None = None) -> None:
        super().__init__()
        secret = (secret or "").strip()
        # short values would mask unrelated text
        self.secret = secret if len(secret) >= 32 else ""

    def _mask(self, text: str) -> str:
        for pattern, replacement in self.PATTERNS:
            text = pattern.sub(replacement, text)
        if self.secret:
            text = text.replace(self.secret, "***MASKED***")
            text = text.replace(self.secret.removeprefix("0x"), "***MASKED***")
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self._mask(record.msg)
        if record.args and isinstance(record.args, tuple):
            record.args = tuple(self._mask(a) if isinstance(a, str) else a for a in record.args)
        return True


def setup_logging(log_level: str | None = None) -> logging.Logger:
    """
    Configure the ``filestamp`` logger tree once.

    Args:
        log_level: DEBUG/INFO/WARNING/ERROR. Defaults to settings.log_level.

    Returns:
        The package root logger.
    """
    level_name = (log_level or settings.log_level or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    logger = logging.getLogger("filestamp")
    logger.setLevel(level)
    if logger.handlers:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    handler.addFilter(PrivateKeyFilter(settings.web3_private_key))
    logger.addHandler(handler)
    return logger
