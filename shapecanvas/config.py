"""Configuration management for the ShapeCanvas backend."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = "ShapeCanvas API"
    log_level: str = "INFO"

    # CORS: comma-separated list of origins allowed to call the API
    allowed_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

    # Code generation
    model_class_name: str = "VisualNet"
    synthetic_dataset_size: int = 4

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        protected_namespaces = ()

    @property
    def origins(self) -> list[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]


settings = Settings()
