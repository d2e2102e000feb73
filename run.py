import uvicorn

from instacaption.config import settings

if __name__ == "__main__":
    print(f"Starting server at http://{settings.HOST}:{settings.PORT} ")
    # One worker: the caption session lives in process memory
    uvicorn.run(
        "instacaption.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=True,
        log_level=settings.LOG_LEVEL.lower()
    )
