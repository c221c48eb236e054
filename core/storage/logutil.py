# core/storage/logutil.py
import logging, os

_LOGGER_NAME = "core.storage"  # package logger all engine modules inherit from
_initialized = False

def setup_once():
    """
    Attach a plain-text file handler to the engine's package logger when
    FILEDASH_STORAGE_LOG names a file. Without it, records propagate to
    whatever the host process configured.
    """
    global _initialized
    if _initialized:
        return
    logger = logging.getLogger(_LOGGER_NAME)
    for h in logger.handlers:
        if hasattr(h, "_is_storage_log"):
            _initialized = True
            return

    log_path = os.environ.get("FILEDASH_STORAGE_LOG")
    if log_path:
        os.makedirs(os.path.dirname(log_path) or ".", exist_ok=True)
        fh = logging.FileHandler(log_path, encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh._is_storage_log = True
        fh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        logger.setLevel(logging.DEBUG)
        logger.addHandler(fh)
        logger.propagate = False   # stop at package boundary (prevents double logging via root)
        logger.debug(f"storage logger initialized at {log_path}")
    _initialized = True

def get_logger(name: str | None = None) -> logging.Logger:
    """Return the shared package logger or a child logger."""
    base = logging.getLogger(_LOGGER_NAME)
    if not _initialized:
        setup_once()
    return base if not name else logging.getLogger(f"{_LOGGER_NAME}.{name}")
