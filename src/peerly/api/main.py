"""
Peerly API - FastAPI service over DOI/PMID resolution and keyword search
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import find_dotenv, load_dotenv

from .routes import papers

# Load local .env so PEERLY_* settings are available in API mode.
load_dotenv(find_dotenv(usecwd=True), override=False)

app = FastAPI(
    title="Peerly API",
    description="Paper metadata resolution (DOI, PMID) and keyword search",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "version": "0.1.0"}


app.include_router(papers.router, prefix="/api", tags=["Papers"])


@app.on_event("shutdown")
async def _shutdown_workflow():
    await papers.close_workflow()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
