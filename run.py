import uvicorn
from flowx.config import settings, configure_logging

if __name__ == "__main__":
    configure_logging()
    # Start the reference store server
    print(f"Starting FlowX store server on {settings.API_HOST}:{settings.API_PORT}...")
    uvicorn.run(
        "flowx.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.API_RELOAD
    )
