# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
PulseFlow API - application wiring.

The chain adapter is deployment-specific (RPC provider, key custody), so the
app is built by a factory instead of at import time:

    service = build_service(MyChainAdapter(...))
    app = create_app(service)
"""
# Load environment variables from .env file (local development)
from dotenv import load_dotenv
from pathlib import Path as _PathForEnv
_env_path = _PathForEnv(__file__).parent.parent.parent / ".env"
if _env_path.exists():
    load_dotenv(_env_path)

from pathlib import Path
from typing import List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pulseflow.api import quotes, workflows
from pulseflow.core.config import Config, get_config
from pulseflow.core.logging import get_service_logger
from pulseflow.engine.adapter import ChainAdapter
from pulseflow.engine.amounts import AmountResolver
from pulseflow.engine.events import ExecutionLogSink, HistoryEventSink, LoggingEventSink
from pulseflow.engine.executor import WorkflowRunner
from pulseflow.engine.preflight import NodeConfigValidator
from pulseflow.services.workflow_service import FileWorkflowStore, WorkflowService

logger = get_service_logger("app")


def build_sinks(config: Config) -> List[ExecutionLogSink]:
    """Structured logs always; History MCP when enabled in config"""
    sinks: List[ExecutionLogSink] = [LoggingEventSink()]
    if config.history_enabled:
        sinks.append(HistoryEventSink(config.history_mcp_url, timeout=config.http_timeout))
    return sinks


def build_service(adapter: ChainAdapter, config: Config = None) -> WorkflowService:
    """Wire store, runner, sinks and editor helpers from configuration"""
    config = config or get_config()
    sinks = build_sinks(config)

    def runner_factory(**kwargs) -> WorkflowRunner:
        return WorkflowRunner(adapter, config=config, sinks=sinks, **kwargs)

    return WorkflowService(
        store=FileWorkflowStore(Path(config.workflows_path)),
        runner_factory=runner_factory,
        run_timeout=config.run_timeout_seconds,
        validator=NodeConfigValidator(adapter, config),
        resolver=AmountResolver(adapter, config),
    )


def create_app(service: WorkflowService) -> FastAPI:
    app = FastAPI(
        title="PulseFlow Workflow Engine",
        description="Runs on-chain automation workflows",
        version="0.1.0",
    )

    # CORS for frontend
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # In production, specify exact origins
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(workflows.router)
    app.include_router(quotes.router)
    app.dependency_overrides[workflows.get_workflow_service] = lambda: service

    @app.get("/health")
    async def health():
        return {"status": "ok", "active_runs": len(service.active_runs())}

    logger.info("PulseFlow API initialized")
    return app
