import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler


class Logger:
    """Centralized logging setup with Rich"""

    @staticmethod
    def setup_logging(log_level: str = "INFO", log_dir: str = "logs") -> logging.Logger:
        """Setup logging configuration with Rich handler"""
        log_path = Path(log_dir)
        log_path.mkdir(exist_ok=True)

        # Clear existing handlers
        logging.getLogger().handlers.clear()

        logging.basicConfig(
            level=getattr(logging, log_level.upper(), logging.INFO),
            format="%(name)s - %(message)s",
            datefmt="[%X]",
            handlers=[
                RichHandler(console=Console(stderr=True), rich_tracebacks=True),
                logging.FileHandler(log_path / "knowledge_base.log", encoding="utf-8"),
            ],
        )
        return logging.getLogger("knowledge_base")
