"""Configuration management for Spendscope."""

import logging
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Development mode
    dev_mode: bool = True
    log_level: str = "INFO"

    # Data directory
    data_dir: Path = Path.home() / ".spendscope"

    # API settings
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Comma separated list of origins allowed by the extraction function ("*" = any)
    allowed_origins: str = "*"

    # Remote extraction function. Empty means decode locally.
    extraction_url: str = ""
    extraction_connect_timeout: float = 5.0
    extraction_read_timeout: float = 60.0

    # Structured (PDF) extraction
    max_pdf_pages: int = 50

    # OCR
    ocr_lang: str = "eng"
    ocr_psm: int = 6
    ocr_band_height: int = 400

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def db_path(self) -> Path:
        """Get the SQLite database path."""
        suffix = "dev" if self.dev_mode else "prod"
        return self.data_dir / f"spendscope_{suffix}.db"

    @property
    def uploads_path(self) -> Path:
        """Get the uploads directory path."""
        return self.data_dir / "uploads"

    @property
    def origin_list(self) -> list[str]:
        """Allowed origins as a list. An empty setting falls back to "*"."""
        origins = [o.strip() for o in self.allowed_origins.split(",") if o.strip()]
        return origins or ["*"]

    def ensure_directories(self) -> None:
        """Create necessary directories if they don't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.uploads_path.mkdir(parents=True, exist_ok=True)

    def log_config(self) -> None:
        """Log current configuration."""
        print("\n" + "=" * 60)
        print("📋 CONFIGURATION LOADED")
        print("=" * 60)
        print(f"Dev Mode:            {self.dev_mode}")
        print(f"Log Level:           {self.log_level}")
        print(f"Data Directory:      {self.data_dir}")
        print(f"Database:            {self.db_path}")
        print(f"Uploads:             {self.uploads_path}")
        print(f"Allowed Origins:     {', '.join(self.origin_list)}")
        print(f"Extraction URL:      {self.extraction_url or '(local decode)'}")
        print(f"Extraction Timeout:  {self.extraction_connect_timeout}s / {self.extraction_read_timeout}s")
        print(f"Max PDF Pages:       {self.max_pdf_pages}")
        print(f"OCR:                 lang={self.ocr_lang} psm={self.ocr_psm} band={self.ocr_band_height}px")
        print(f"API Host:            {self.api_host}:{self.api_port}")
        print("=" * 60 + "\n")


def configure_logging() -> None:
    """Apply the configured log level to the root logger."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# Global settings instance
settings = Settings()
