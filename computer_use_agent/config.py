"""
Runtime configuration loaded from the environment (and a .env file, if present).
"""
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class AgentConfig(BaseModel):
    """
    Settings shared by the agent loop, the executor and the browser registry.

    Environment Variables:
        AZURE_OPENAI_ENDPOINT: Azure OpenAI endpoint URL
        AZURE_OPENAI_API_KEY: Azure OpenAI API key
        OPENAI_API_VERSION: API version (default: 2024-12-01-preview)
        AZURE_OPENAI_CHAT_DEPLOYMENT_NAME: Deployment name (default: gpt-4o-mini)
        DISPLAY_SCALE_FACTOR: Logical-to-device coordinate ratio (default: 1.0)
        AGENT_MAX_STEPS / AGENT_MAX_DURATION_S: loop budgets
        BROWSER_*: browser launch settings
    """
    # Model
    azure_endpoint: Optional[str] = None
    api_key: Optional[str] = None
    api_version: str = "2024-12-01-preview"
    model: str = "gpt-4o-mini"

    # Loop budgets
    max_steps: int = Field(default=40, ge=1)
    max_duration_s: float = Field(default=600.0, gt=0)
    close_on_finish: bool = False

    # Display
    scale_factor: float = 1.0
    viewport_width: int = 1280
    viewport_height: int = 800

    # Browser
    headless: bool = True
    start_url: str = "https://www.google.com"
    chrome_path: Optional[str] = None
    overlay_enabled: bool = True

    # Pointer motion
    mouse_move_steps: int = Field(default=20, ge=1)
    mouse_move_delay_s: float = Field(default=0.01, ge=0)

    # Transcript
    transcript_db_path: str = "transcripts.db"

    @field_validator("scale_factor")
    @classmethod
    def _check_scale_factor(cls, value: float) -> float:
        if not 0 < value <= 2:
            raise ValueError(f"scale_factor must be in (0, 2], got {value}")
        return value

    @property
    def display_width(self) -> int:
        """Width the model is told the display has"""
        return round(self.viewport_width * self.scale_factor)

    @property
    def display_height(self) -> int:
        return round(self.viewport_height * self.scale_factor)

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "AgentConfig":
        load_dotenv(dotenv_path=dotenv_path)
        defaults = cls()
        return cls(
            azure_endpoint=os.getenv("AZURE_OPENAI_ENDPOINT"),
            api_key=os.getenv("AZURE_OPENAI_API_KEY"),
            api_version=os.getenv("OPENAI_API_VERSION", defaults.api_version),
            model=os.getenv("AZURE_OPENAI_CHAT_DEPLOYMENT_NAME", defaults.model),
            max_steps=int(os.getenv("AGENT_MAX_STEPS", defaults.max_steps)),
            max_duration_s=float(os.getenv("AGENT_MAX_DURATION_S", defaults.max_duration_s)),
            close_on_finish=_env_bool("CLOSE_ON_FINISH", defaults.close_on_finish),
            scale_factor=float(os.getenv("DISPLAY_SCALE_FACTOR", defaults.scale_factor)),
            viewport_width=int(os.getenv("BROWSER_VIEWPORT_WIDTH", defaults.viewport_width)),
            viewport_height=int(os.getenv("BROWSER_VIEWPORT_HEIGHT", defaults.viewport_height)),
            headless=_env_bool("BROWSER_HEADLESS", defaults.headless),
            start_url=os.getenv("BROWSER_START_URL", defaults.start_url),
            chrome_path=os.getenv("CHROME_PATH"),
            overlay_enabled=_env_bool("OVERLAY_ENABLED", defaults.overlay_enabled),
            mouse_move_steps=int(os.getenv("MOUSE_MOVE_STEPS", defaults.mouse_move_steps)),
            mouse_move_delay_s=float(os.getenv("MOUSE_MOVE_DELAY_S", defaults.mouse_move_delay_s)),
            transcript_db_path=os.getenv("TRANSCRIPT_DB_PATH", defaults.transcript_db_path),
        )

    def require_model_credentials(self) -> None:
        if not self.azure_endpoint or not self.api_key:
            raise ValueError(
                "Missing required environment variables!\n"
                "Please set AZURE_OPENAI_ENDPOINT and AZURE_OPENAI_API_KEY\n"
                "in your .env file or environment."
            )
