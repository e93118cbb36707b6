"""Application configuration using environment variables."""
import os
from functools import lru_cache
from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Application settings loaded from environment variables."""

    # Server
    HOST: str = os.getenv("HOST", "127.0.0.1")
    PORT: int = int(os.getenv("PORT", "8000"))
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # CORS - comma separated list of allowed origins
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "http://localhost:3000")

    # Battlefield defaults
    FEET_PER_SQUARE: int = int(os.getenv("FEET_PER_SQUARE", "5"))  # Each grid square = 5 feet
    DEFAULT_GRID_WIDTH: int = int(os.getenv("DEFAULT_GRID_WIDTH", "20"))
    DEFAULT_GRID_HEIGHT: int = int(os.getenv("DEFAULT_GRID_HEIGHT", "20"))
    MAX_GRID_DIMENSION: int = int(os.getenv("MAX_GRID_DIMENSION", "200"))

    # Encounter lifecycle
    RETAIN_ENDED_ENCOUNTERS: bool = os.getenv("RETAIN_ENDED_ENCOUNTERS", "true").lower() == "true"
    RULES_PRESET: str = os.getenv("RULES_PRESET", "standard")
    RULES_FILE: str = os.getenv("RULES_FILE", "")  # JSON rules file; overrides RULES_PRESET

    @property
    def cors_origins(self):
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
