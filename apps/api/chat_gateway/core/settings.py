from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    env: str = "dev"

    # upstream model backend
    model_base_url: str = "http://localhost:8000/v1"
    model_endpoint: str = "/chat/completions"     # dialect is derived from this path
    model_name: str = "local-llama"
    model_api_key: Optional[str] = None
    model_temperature: float = 0.2
    model_max_tokens: int = 512

    # outbound stream
    sse_heartbeat_seconds: float = 20.0
    first_fragment_timeout_seconds: float = 7.0

    # upstream transport
    connect_timeout_seconds: float = 10.0
    read_timeout_seconds: float = 600.0
    max_connections: int = 100

    # logging / tracing
    log_level: str = "INFO"
    log_sample_model_events: float = 0.2  # 0..1
    request_id_header: str = "x-request-id"
    run_id_header: str = "x-run-id"
    otlp_endpoint: Optional[str] = None  # e.g. http://otel-collector:4318

    # retrieval collaborators
    embedding_model: Optional[str] = None  # enables the HTTP embedder when set
    embedding_endpoint: str = "/embeddings"
    ask_max_context_chars: int = 4000
    ask_system_prompt: str = "Use ONLY provided context. Say you don't know if unsure."

    class Config:
        case_sensitive = False
        env_file = ".env"

settings = Settings()
