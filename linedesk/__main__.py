"""Run the responder under uvicorn: ``python -m linedesk``."""
import uvicorn

from linedesk.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "linedesk.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
