from utils.config import PORT, SESSION_STORE_BACKEND  # загружает .env до остальных импортов

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from contextlib import asynccontextmanager

from utils.firebase import init_firebase
from utils.logger import logger
from services.errors import CoordinatorError

from routes.session_routes import router as session_router

@asynccontextmanager
async def lifespan(_app: FastAPI):
    # это выполняется *один раз* перед первым запросом
    if SESSION_STORE_BACKEND == "firestore":
        init_firebase()
    logger.info(f"Cooperative session API started (store={SESSION_STORE_BACKEND})")
    yield

app = FastAPI(
  title="Cooperative Word Search API",
  lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://127.0.0.1:3000", "http://localhost:8081"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(CoordinatorError)
async def coordinator_error_handler(_request: Request, exc: CoordinatorError):
    logger.debug(f"{exc.code.value}: {exc.message}")
    return JSONResponse(
        status_code=exc.http_status,
        content={"detail": exc.message, "error_code": exc.code.value},
    )

# Регистрация роутеров
app.include_router(session_router, prefix="/sessions", tags=["cooperative"])

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=PORT,
        reload=True,
    )
