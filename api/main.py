from datetime import datetime
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from multisync.core.errors import (
    FlowConfigError,
    FlowOutputError,
    FlowReferenceError,
    MissingApiKeyError,
)
from multisync.core.orchestrator import run_flow
from multisync.core.settings import Settings

app = FastAPI(title="multisync API", version="1.0.0")


class FlowRunRequest(BaseModel):
    config: Dict[str, Any]
    prompt: str
    api_key: Optional[str] = Field(default=None, alias="apiKey")


@app.get("/health")
async def health_check():
    """
    Report whether the service can run flows
    """
    settings = Settings.from_env()
    credential = "configured" if settings.api_key else "missing"

    return {
        "status": "healthy" if settings.api_key else "degraded",
        "timestamp": datetime.now().isoformat(),
        "services": {"openai_credential": credential},
        "default_model": settings.default_model,
    }


@app.post("/flows/run")
async def run_flow_endpoint(request: FlowRunRequest):
    """
    Run a workflow configuration for one prompt
    """
    try:
        return await run_flow(request.config, request.prompt, request.api_key)
    except MissingApiKeyError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except (FlowConfigError, FlowReferenceError, FlowOutputError) as e:
        raise HTTPException(status_code=422, detail=str(e))


@app.get("/")
async def root():
    return {"message": "multisync API", "status": "running"}

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
