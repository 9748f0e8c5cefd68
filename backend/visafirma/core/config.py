from functools import lru_cache
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Configuración global de VisaFirma.
    Lee automáticamente variables del archivo .env.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Proyecto
    project_name: str = "VisaFirma"
    debug: bool = False

    # Base de datos
    database_url: str = "sqlite:///./dev.db"
    # segundos que SQLite espera por un bloqueo de escritura ajeno
    database_busy_timeout: float = 30.0

    # Almacenamiento local de artefactos
    storage_base_path: str = "_storage"
    uploads_root: str = "uploads"

    # Almacenamiento S3 / MinIO
    s3_endpoint_url: Optional[str] = None
    s3_access_key: Optional[str] = None
    s3_secret_key: Optional[str] = None
    s3_bucket_documents: str = "visafirma-documents"

    # Proveedor de firma electrónica avanzada
    signing_provider_url: Optional[str] = None
    signing_provider_api_token_key: Optional[str] = None
    signing_provider_secret: str = "changeme"
    signing_provider_algorithm: str = "HS256"
    signing_provider_timeout_seconds: float = 30.0
    signing_provider_token_ttl_minutes: int = 30
    signing_provider_timezone: str = "America/Santiago"
    signing_provider_mock: bool = False
    checksum_algorithm: str = "md5"

    # Consultas paginadas
    pending_default_limit: int = 10
    pending_max_limit: int = 100

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def resolved_provider_url(self) -> str:
        """Resuelve la URL del proveedor sin barra final."""
        return (self.signing_provider_url or "").strip().rstrip("/")


@lru_cache
def get_settings() -> Settings:
    """Retorna la instancia de configuración global (cacheada)."""
    return Settings()


settings = get_settings()
