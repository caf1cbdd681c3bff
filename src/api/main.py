"""
FastAPI application entry-point.
"""
from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.routers import catalog, intent

app = FastAPI(
    title="Dataset Query Copilot",
    version="0.1.0",
    description="Natural-language questions to validated, parameterised SQL over a dataset schema",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(intent.router, prefix="/intent", tags=["Intent"])
app.include_router(catalog.router, tags=["Catalog"])


@app.get("/health")
def health():
    return {"status": "ok"}
