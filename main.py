"""
Main entry point for the retouch quota and order engine.
"""
import uvicorn
from apps.api.main import app  # noqa: F401
from apps.core.settings import settings

if __name__ == "__main__":
    uvicorn.run(
        "apps.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
        log_level=settings.log_level.lower()
    )
