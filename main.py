"""Serve the admin API (job triggers, status, manual mapping)."""
import uvicorn

from recon.config import get_settings

if __name__ == "__main__":
    settings = get_settings()
    database = settings.db.url.split("@")[-1] if "@" in settings.db.url else "SQLite"
    print(f"{settings.app_name} v{settings.version} on {settings.host}:{settings.port}")
    print(f"Environment: {settings.environment.value}, database: {database}")

    uvicorn.run(
        "recon.api:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        reload_dirs=["recon"] if settings.debug else None,
        log_level=settings.logging.level.lower(),
    )
