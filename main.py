"""
Entry point untuk knowledge base ingestion API
"""
import uvicorn

from knowledge_base.api.app import create_app
from knowledge_base.config import settings

# Create FastAPI app instance
app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload
    )
