# counselor/main.py
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from counselor.db import init_db
from counselor.llm import LLMConfigurationError
from counselor.api.routes import router as api_router


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Counselor API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # for dev; tighten in prod
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)


@app.on_event("startup")
def on_startup() -> None:
    init_db()


@app.exception_handler(LLMConfigurationError)
async def llm_configuration_error(request: Request, exc: LLMConfigurationError):
    return JSONResponse({"error": str(exc)}, status_code=500)


@app.get("/")
def root():
    return {"message": "Counselor API is running"}


app.include_router(api_router, prefix="/api")
