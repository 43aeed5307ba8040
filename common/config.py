from pydantic_settings import BaseSettings


class BotSettings(BaseSettings):
    meeting_url: str = ""
    meeting_id: str = ""
    user_id: str = ""
    bot_name: str = "AI Architect Bot"
    platform: str = ""  # "package.module:factory" building the meeting adapter
    max_runtime_s: float = 4 * 60 * 60
    runtime_warning_s: float = 15 * 60
    drain_timeout_s: float = 5.0
    map_speaker_roles: bool = False
    health_host: str = "0.0.0.0"
    health_port: int = 8080
    log_level: str = "INFO"

    model_config = {"env_prefix": "BOT_"}


class TranscribeSettings(BaseSettings):
    language_code: str = "en-US"
    sample_rate: int = 16000
    min_confidence: float = 0.7
    diarization: bool = True
    min_speakers: int = 1
    max_speakers: int = 6
    interim_results: bool = True
    stream_limit_s: float = 290.0

    model_config = {"env_prefix": "ASR_"}


class CallbackSettings(BaseSettings):
    url: str = ""
    secret: str = ""
    max_attempts: int = 3
    timeout_s: float = 10.0

    model_config = {"env_prefix": "CALLBACK_"}
