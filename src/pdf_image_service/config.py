import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

MAX_SOURCE_BYTES = 10 * 1024 * 1024
RASTER_DPI = 300

_TRUTHY = {"1", "true", "yes", "on"}


def _default_workers() -> int:
    return (os.cpu_count() or 1) * 2


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, read once at boot and passed to every component."""

    upload_dir: Path
    host: str = "0.0.0.0"
    port: int = 9501
    url_scheme: str = "http"
    url_host: str = "0.0.0.0"
    url_port: int = 9501
    app_env: str = "production"
    workers: int = 1
    reload: bool = False
    log_level: str = "INFO"
    max_request_bytes: int = 50 * 1024 * 1024
    max_source_bytes: int = MAX_SOURCE_BYTES
    raster_dpi: int = RASTER_DPI

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        host = env.get("HOST", "0.0.0.0")
        port = int(env.get("PORT", "9501"))
        upload_dir = Path(env.get("UPLOAD_DIR") or "./uploads").resolve()
        return cls(
            upload_dir=upload_dir,
            host=host,
            port=port,
            # advertised URL may differ from the bind address (proxies, containers)
            url_scheme=env.get("APP_URL_SCHEME") or "http",
            url_host=env.get("APP_URL_HOST") or host,
            url_port=int(env.get("APP_URL_PORT") or port),
            app_env=env.get("APP_ENV", "production"),
            workers=int(env.get("WORKERS") or _default_workers()),
            reload=env.get("RELOAD", "false").lower() in _TRUTHY,
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
            max_request_bytes=int(env.get("MAX_REQUEST_MB", "50")) * 1024 * 1024,
        )

    @property
    def base_url(self) -> str:
        return f"{self.url_scheme}://{self.url_host}:{self.url_port}"

    @property
    def debug(self) -> bool:
        return self.app_env == "development"

    @property
    def sources_dir(self) -> Path:
        return self.upload_dir / "tmp"

    @property
    def incoming_dir(self) -> Path:
        return self.upload_dir / "incoming"

    def ensure_dirs(self) -> None:
        for d in (self.upload_dir, self.sources_dir, self.incoming_dir):
            d.mkdir(parents=True, exist_ok=True)
