import os
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    APP_NAME: str = "Code Judge Runner"
    API_PREFIX: str = ""
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # Workspace
    WORK_DIR: str = os.path.join(os.getcwd(), "temp")

    # Limits
    RUN_TIME_LIMIT_S: float = 5
    BUILD_TIME_LIMIT_S: float = 10
    RUN_MAX_OUTPUT_BYTES: int = 1024 * 1024
    KILL_GRACE_S: float = 1.0
    CLEANUP_GRACE_S: float = 2.0
    STDERR_FALLBACK: bool = True

    # Admission control
    MAX_CONCURRENT_RUNS: int = min(os.cpu_count() or 1, 4)
    MAX_QUEUED_RUNS: int = 16
    QUEUE_TIMEOUT_S: float = 10

    # Sandbox: "local" or "docker"
    SANDBOX: str = "local"
    DOCKER_BIN: str = "docker"
    DOCKER_IMAGE: str = "codejudge-toolchains:latest"
    RUN_MEMORY: str = "256m"
    RUN_CPUS: str = "0.5"
    RUN_PIDS_LIMIT: int = 64
    SANDBOX_USER: str = "65534:65534"
    RUN_MEMORY_MB: int | None = None
    SANDBOX_MAX_FILE_BYTES: int = 64 * 1024 * 1024

    # Toolchains
    CC: str = "gcc"
    CXX: str = "g++"
    JAVAC: str = "javac"
    JAVA: str = "java"
    PYTHON: str = "python3"

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]
    CORS_ORIGIN_REGEX: str | None = r"https?://.*\.vercel\.app"

    class Config:
        env_file = ".env"


@lru_cache
def get_settings() -> Settings:
    return Settings()
