"""
scalezero - FastAPI Application
Launches workload endpoint pairs on demand and reports their readiness
"""

import logging

from fastapi import FastAPI

from .routes.launch import get_orchestrator, router as launch_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="scalezero",
    description="On-demand launcher for scale-to-zero workloads",
    version="1.0.0"
)


@app.get("/health")
async def health_check():
    """Health check for container orchestration"""
    return {"status": "healthy"}


@app.get("/status")
async def orchestrator_status():
    """Launch orchestrator counters and recent errors"""
    orchestrator = get_orchestrator()
    status = orchestrator.get_status()
    status["recent_errors"] = orchestrator.get_recent_errors()
    return status


# Catch-all workload route goes last so /health and /status win
app.include_router(launch_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
