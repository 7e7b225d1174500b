"""
Configuration settings for the update server
"""
import os
from dotenv import load_dotenv

load_dotenv()


def _split_extensions(raw: str) -> tuple[str, ...]:
    """Normalise a comma-separated extension list (".exe, .MSI" -> (".exe", ".msi"))"""
    extensions = []
    for item in raw.split(","):
        item = item.strip().lower()
        if not item:
            continue
        if not item.startswith("."):
            item = f".{item}"
        extensions.append(item)
    return tuple(extensions)


class Settings:
    """
    Application settings.

    Values are read from the environment (and a .env file) when the object is
    created, so tests can patch the environment and build a fresh instance.
    """

    def __init__(self, **overrides):
        # Database
        self.DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./data/update_server.db")

        # Storage
        self.STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "local").lower()
        self.TEMP_UPLOAD_DIR: str = os.getenv("TEMP_UPLOAD_DIR", "./data/temp")
        self.ARTIFACT_DIR: str = os.getenv("ARTIFACT_DIR", "./data/uploads")

        # MinIO / Object Storage
        self.MINIO_ENDPOINT: str = os.getenv("MINIO_ENDPOINT", "localhost:9000")
        self.MINIO_ACCESS_KEY: str = os.getenv("MINIO_ACCESS_KEY", "minioadmin")
        self.MINIO_SECRET_KEY: str = os.getenv("MINIO_SECRET_KEY", "minioadmin")
        self.MINIO_BUCKET: str = os.getenv("MINIO_BUCKET", "update-artifacts")
        self.MINIO_SECURE: bool = os.getenv("MINIO_SECURE", "false").lower() == "true"

        # Upload rules
        self.ALLOWED_EXTENSIONS: tuple[str, ...] = _split_extensions(os.getenv("ALLOWED_EXTENSIONS", ".exe"))
        self.MAX_CHUNK_SIZE: int = int(os.getenv("MAX_CHUNK_SIZE", str(5 * 1024 * 1024)))
        self.SESSION_TTL_HOURS: float = float(os.getenv("SESSION_TTL_HOURS", "24"))

        # Server
        self.SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
        self.SERVER_PORT: int = int(os.getenv("SERVER_PORT", "5100"))

        # Logging
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

        # Application
        self.APP_TITLE: str = "Installer Update Server"
        self.APP_DESCRIPTION: str = "Chunked installer uploads and client update checks"
        self.APP_VERSION: str = "1.0.0"

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise AttributeError(f"Unknown setting: {key}")
            if key == "ALLOWED_EXTENSIONS" and isinstance(value, str):
                value = _split_extensions(value)
            setattr(self, key, value)


settings = Settings()
