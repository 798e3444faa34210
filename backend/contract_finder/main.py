import logging
import sqlite3
from contextlib import asynccontextmanager

import httpx
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from contract_finder.config import settings
from contract_finder.database import init_db
from contract_finder.routers import analysis, credentials, search
from contract_finder.services.credential_service import CredentialResolver
from contract_finder.services.inference_service import FieldInferrer
from contract_finder.services.search_service import SearchService

logger = logging.getLogger("app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: create or migrate the database, then build the shared clients
    init_db(settings.db_path)
    conn = sqlite3.connect(str(settings.db_path))
    result = conn.execute("PRAGMA integrity_check").fetchone()
    conn.close()
    if result and result[0] == "ok":
        logger.info("Database integrity check passed.")
    else:
        logger.error("DATABASE INTEGRITY CHECK FAILED: %s", result)

    http = httpx.AsyncClient(timeout=settings.search_timeout_seconds)
    inferrer = FieldInferrer.from_settings(settings)
    resolver = CredentialResolver(
        settings.google_client_id,
        settings.google_client_secret,
        settings.google_token_uri,
        timeout=settings.search_timeout_seconds,
    )
    app.state.inferrer = inferrer
    app.state.resolver = resolver
    app.state.search_service = SearchService.from_settings(settings, http, resolver, inferrer)
    yield
    # Shutdown: close network clients
    await http.aclose()
    await inferrer.close()


app = FastAPI(
    title="Contract Finder",
    description="Search Gmail, Drive and Vault for contracts and extract renewal details",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://127.0.0.1:5173",
        "http://localhost:5173",
    ],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(search.router, prefix=settings.api_prefix)
app.include_router(credentials.router, prefix=settings.api_prefix)
app.include_router(analysis.router, prefix=settings.api_prefix)


@app.get("/health")
async def health():
    return {"status": "ok", "version": "0.1.0"}


def run():
    uvicorn.run(app, host=settings.host, port=settings.port)
