# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Workflow API Routes

Read, run, stop and pre-flight check workflows.
"""

from typing import List, Dict, Any
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from pulseflow.services.workflow_service import WorkflowService
from pulseflow.core.errors import NotFoundError, ValidationError, sanitize_error_for_user

router = APIRouter(prefix="/workflows", tags=["workflows"])


# Request Models
class NodeValidationRequest(BaseModel):
    """One node's editor form"""
    nodeType: str
    formData: Dict[str, Any] = Field(default_factory=dict)


# Dependency injection placeholder - wired up in main.create_app
def get_workflow_service() -> WorkflowService:
    """Get WorkflowService instance (overridden in main.create_app)"""
    raise NotImplementedError("WorkflowService dependency not configured")


@router.get("")
async def list_workflows(
    service: WorkflowService = Depends(get_workflow_service)
) -> List[Dict[str, Any]]:
    """List all workflows"""
    return await service.list_workflows()


@router.get("/runs/active")
async def list_active_runs(
    service: WorkflowService = Depends(get_workflow_service)
) -> List[Dict[str, Any]]:
    """List runs currently in progress"""
    return service.active_runs()


@router.get("/{workflow_id}")
async def get_workflow(
    workflow_id: str,
    service: WorkflowService = Depends(get_workflow_service)
) -> Dict[str, Any]:
    """Get a specific workflow definition"""
    try:
        return await service.get_workflow(workflow_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/{workflow_id}/run")
async def run_workflow(
    workflow_id: str,
    service: WorkflowService = Depends(get_workflow_service)
) -> Dict[str, Any]:
    """
    Execute a workflow.

    Node failures and cancellation are reported in the body (status
    "failed" / "cancelled"), not as HTTP errors.
    """
    try:
        outcome = await service.run_workflow(workflow_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Workflow execution failed: {sanitize_error_for_user(e, include_type=False)}",
        )
    return outcome.summary()


@router.post("/{workflow_id}/validate")
async def validate_node(
    workflow_id: str,
    request: NodeValidationRequest,
    service: WorkflowService = Depends(get_workflow_service)
) -> Dict[str, Any]:
    """Pre-flight check of one node's form data (hardErrors / softWarnings per field)"""
    try:
        result = await service.validate_node(workflow_id, request.nodeType, request.formData)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Validation failed: {sanitize_error_for_user(e, include_type=False)}",
        )
    return result.model_dump(by_alias=True)


@router.post("/{workflow_id}/stop")
async def stop_workflow(
    workflow_id: str,
    service: WorkflowService = Depends(get_workflow_service)
) -> Dict[str, Any]:
    """Cancel the running executions of a workflow"""
    try:
        return await service.stop_workflow(workflow_id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="No running execution found")
