"""API server entry point for python -m taleweaver.api"""
import uvicorn
from taleweaver.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "taleweaver.api.app:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=False,
    )
