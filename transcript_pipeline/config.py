"""Configuration settings for the transcription pipeline."""

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()

# Stage keys, in pipeline order. Each prefixes its own env vars.
STAGE_KEYS = ("INGRESS", "SERVICE_DISPATCH", "TRANSCRIPTION", "TAGGING", "TAGGING_QA", "COMPLETION")

# (service name, queue written to, next service, port)
DEFAULT_TOPOLOGY: dict[str, tuple[str, str, str, int]] = {
    "INGRESS": ("initial-request", "initial-request", "service-dispatch", 8080),
    "SERVICE_DISPATCH": ("service-dispatch", "transcription", "transcription", 8081),
    "TRANSCRIPTION": ("transcription", "tagging", "tagging", 8082),
    "TAGGING": ("tagging", "tagging-qa", "tagging-qa", 8083),
    "TAGGING_QA": ("tagging-qa", "completion", "completion", 8084),
    "COMPLETION": ("completion", "", "", 8085),
}

DEFAULT_PORT = 8080


@dataclass(frozen=True)
class StageSettings:
    """The (service-name, queue-to-write-to, next-service-name) triple of one stage."""

    key: str
    service_name: str
    write_to_queue: str
    next_service_name: str
    port: int
    url: str

    @property
    def is_terminal(self) -> bool:
        return not self.write_to_queue


def _env_bool(name: str) -> bool:
    return os.getenv(name, "false").lower() in ("1", "true", "yes")


class Settings:
    """Application settings loaded from environment variables."""

    # Cloud project
    PROJECT_ID: str = os.getenv("PROJECT_ID", "")
    STORAGE_LOCATION: str = os.getenv("STORAGE_LOCATION", "us-central1")

    # Encrypted config (consumed by the external loader)
    ENCRYPTED_BUCKET: str = os.getenv("ENCRYPTED_BUCKET", "")
    CONFIG_FILE: str = os.getenv("CONFIG_FILE", "")
    KMS_KEYRING: str = os.getenv("KMS_KEYRING", "")
    KMS_KEY: str = os.getenv("KMS_KEY", "")
    KMS_LOCATION: str = os.getenv("KMS_LOCATION", "")

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./pipeline.db")
    REQUESTS_COLLECTION: str = os.getenv("REQUESTS_COLLECTION", "requests")

    # Deployment
    IS_DEPLOYED: bool = bool(os.getenv("GAE_ENV")) or _env_bool("DEPLOYED")

    # Queue
    QUEUE_BACKEND: str = os.getenv("QUEUE_BACKEND", "durable" if IS_DEPLOYED else "null").lower()
    QUEUE_DIR: str = os.getenv("QUEUE_DIR", "./queues")
    RABBITMQ_HOST: str = os.getenv("RABBITMQ_HOST", "localhost")
    RABBITMQ_PORT: int = int(os.getenv("RABBITMQ_PORT", "5672"))
    RABBITMQ_USERNAME: str = os.getenv("RABBITMQ_USERNAME", "guest")
    RABBITMQ_PASSWORD: str = os.getenv("RABBITMQ_PASSWORD", "guest")

    # Relay
    RELAY_MAX_ATTEMPTS: int = int(os.getenv("RELAY_MAX_ATTEMPTS", "5"))
    RELAY_POLL_SECONDS: float = float(os.getenv("RELAY_POLL_SECONDS", "1.0"))

    # External services
    RECOGNITION_TIMEOUT_SECONDS: float = float(os.getenv("RECOGNITION_TIMEOUT_SECONDS", "600"))

    # Ingress
    INGRESS_RATE_LIMIT: str = os.getenv("INGRESS_RATE_LIMIT", "60/minute")

    # Application
    DEBUG: bool = _env_bool("DEBUG")

    def stage(self, key: str) -> StageSettings:
        """Read the per-stage settings for `key`, e.g. "TRANSCRIPTION"."""
        key = key.upper()
        if key not in DEFAULT_TOPOLOGY:
            raise KeyError(f"unknown stage {key!r}; expected one of {', '.join(STAGE_KEYS)}")
        svc, queue, next_svc, port = DEFAULT_TOPOLOGY[key]
        port = int(os.getenv(f"{key}_PORT", str(port)))
        return StageSettings(
            key=key,
            service_name=os.getenv(f"{key}_SVC", svc),
            write_to_queue=os.getenv(f"{key}_WRITE_TO_Q", queue),
            next_service_name=os.getenv(f"{key}_NEXT_SVC_TO_HANDLE_REQ", next_svc),
            port=port,
            url=os.getenv(f"{key}_URL", f"http://localhost:{port}"),
        )

    def stage_for_service(self, service_name: str) -> StageSettings | None:
        """Find the stage that runs under `service_name`."""
        for key in STAGE_KEYS:
            stage = self.stage(key)
            if stage.service_name == service_name:
                return stage
        return None

    def validate(self) -> list[str]:
        """Validate settings and return list of warnings."""
        warnings = []
        if self.QUEUE_BACKEND not in ("durable", "filesystem", "memory", "null"):
            warnings.append(f"QUEUE_BACKEND {self.QUEUE_BACKEND!r} is not recognised - tasks will be discarded")
        if self.IS_DEPLOYED and self.QUEUE_BACKEND == "null":
            warnings.append("QUEUE_BACKEND is 'null' in a deployed environment - tasks will be discarded")
        if self.IS_DEPLOYED and not self.PROJECT_ID:
            warnings.append("PROJECT_ID is not set")
        return warnings


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
