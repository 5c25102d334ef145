"""
Service settings for the call flow webhook
"""

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file
load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Supabase (flow store + call logs)
    SUPABASE_URL: str = ""
    SUPABASE_SERVICE_KEY: str = ""
    SUPABASE_ANON_KEY: str = ""
    CALL_FLOWS_TABLE: str = "call_flows"
    CALL_LOGS_TABLE: str = "call_logs"
    CALL_LOGGING_ENABLED: bool = True

    # Twilio request signing
    TWILIO_AUTH_TOKEN: str = ""
    VALIDATE_TWILIO_SIGNATURE: bool = True

    # Public URLs
    PUBLIC_BASE_URL: str = ""

    # Service endpoints
    VOICE_ENDPOINT: str = "/voice"
    STATUS_ENDPOINT: str = "/voice/status"

    # TwiML rendering
    TTS_VOICE: str = "alice"
    GATHER_INPUT: str = "dtmf speech"

    # Phone number normalization
    DEFAULT_COUNTRY_CODE: str = "1"

    # Other
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"

    @property
    def supabase_key(self) -> str:
        """Service key when available, anon key otherwise"""
        return self.SUPABASE_SERVICE_KEY or self.SUPABASE_ANON_KEY

    @property
    def signature_validation_enabled(self) -> bool:
        return self.VALIDATE_TWILIO_SIGNATURE and bool(self.TWILIO_AUTH_TOKEN)


settings = Settings()
