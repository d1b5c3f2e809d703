"""
Configuration management for Devify.
Loads settings from environment variables and .env file.
"""

import os
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv
from loguru import logger

# Load environment variables from .env file
# Try multiple locations: current directory, package directory, user home
_possible_env_paths = [
    Path.cwd() / ".env",  # Current working directory
    Path(__file__).parent.parent.parent / ".env",  # Project root (devify/.env)
    Path.home() / ".devify" / ".env",  # User config directory
]
for _env_path in _possible_env_paths:
    if _env_path.exists():
        load_dotenv(_env_path)
        break
else:
    load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"true", "1", "yes"}


class Config:
    """Configuration manager for Devify."""

    def __init__(self):
        """Initialize configuration from environment variables."""

        # Provider
        self.openai_api_key: Optional[str] = os.getenv("OPENAI_API_KEY")
        self.base_url: Optional[str] = os.getenv("OPENAI_BASE_URL") or None
        self.default_model: str = os.getenv("DEFAULT_MODEL", "gpt-4o-mini")
        self.temperature: float = float(os.getenv("TEMPERATURE", "0.7"))
        self.max_tokens: int = int(os.getenv("MAX_TOKENS", "4096"))
        self.request_timeout: float = float(os.getenv("REQUEST_TIMEOUT", "120"))

        # Orchestration bounds
        self.max_iterations: int = int(os.getenv("MAX_ITERATIONS", "10"))
        self.history_pairs: int = int(os.getenv("HISTORY_PAIRS", "20"))

        # Tool limits
        self.max_read_bytes: int = int(os.getenv("MAX_READ_BYTES", "200000"))
        self.max_write_bytes: int = int(os.getenv("MAX_WRITE_BYTES", "500000"))
        self.command_timeout: int = int(os.getenv("COMMAND_TIMEOUT", "120"))
        self.list_depth: int = int(os.getenv("LIST_DEPTH", "2"))

        # External services
        self.tavily_api_key: Optional[str] = os.getenv("TAVILY_API_KEY")
        self.github_token: Optional[str] = os.getenv("GITHUB_TOKEN") or None
        self.tasks_file: Path = Path(os.getenv("TASKS_FILE", str(Path.home() / ".devify" / "tasks.json")))

        # Logging
        self.log_level: str = os.getenv("LOG_LEVEL", "INFO")
        self.console_log_level: str = os.getenv("CONSOLE_LOG_LEVEL", "WARNING")
        # An empty LOG_FILE disables the file sink
        log_file = os.getenv("LOG_FILE", "./devify.log")
        self.log_file: Optional[Path] = Path(log_file) if log_file else None
        self.console_logging: bool = _env_bool("CONSOLE_LOGGING", "true")

        # Advanced Settings
        self.debug_mode: bool = _env_bool("DEBUG_MODE", "false")
        self.mock_mode: bool = _env_bool("MOCK_MODE", "false")

        self._validate()
        self._setup_logging()

    def _validate(self):
        """Validate configuration settings."""
        if self.max_iterations < 1:
            logger.warning(f"MAX_ITERATIONS={self.max_iterations} is invalid, using 1")
            self.max_iterations = 1
        if self.history_pairs < 1:
            self.history_pairs = 1
        if self.list_depth < 0:
            self.list_depth = 0

    def _setup_logging(self):
        """Configure logging based on settings."""
        logger.remove()  # Remove default handler

        if self.console_logging:
            logger.add(
                lambda msg: print(msg, end=""),
                level=self.console_log_level,
                colorize=True,
                format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
            )

        if self.log_file:
            logger.add(
                self.log_file,
                level=self.log_level,
                rotation="10 MB",
                retention="1 week",
                format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function} - {message}"
            )

        if self.debug_mode:
            logger.info("Debug mode enabled")
        if self.mock_mode:
            logger.info("Mock mode enabled (model responses will be scripted)")

    def __repr__(self) -> str:
        """String representation of config."""
        return (
            f"Config(model={self.default_model}, "
            f"api_key={'set' if self.openai_api_key else 'missing'}, "
            f"max_iterations={self.max_iterations})"
        )


# Global config instance
config = Config()
