import logging
import sys

_CONTEXT_FIELDS = (
    "provider",
    "elapsed_seconds",
    "error_type",
    "reason",
    "task_id",
    "ai_suggested",
    "method",
    "path",
    "url",
)


class _ContextFormatter(logging.Formatter):
    """Append the structured ``extra`` fields our loggers attach."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = " ".join(
            f"{name}={getattr(record, name)}"
            for name in _CONTEXT_FIELDS
            if hasattr(record, name)
        )
        return f"{line} {context}" if context else line


def setup_logging(level: str = "INFO") -> None:
    """Configure the ``taskboard`` logger tree once; later calls only adjust the level."""
    logger = logging.getLogger("taskboard")
    logger.setLevel(level)

    if any(getattr(handler, "_taskboard", False) for handler in logger.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        _ContextFormatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")
    )
    handler._taskboard = True
    logger.addHandler(handler)
