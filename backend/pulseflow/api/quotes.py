# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Quote API Routes

Pool-ratio quotes for the editor's LP amount fields.
"""

from typing import Any, Dict, Optional, Union
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from pulseflow.api.workflows import get_workflow_service
from pulseflow.services.workflow_service import WorkflowService
from pulseflow.core.errors import NotFoundError, ValidationError, sanitize_error_for_user

router = APIRouter(tags=["quotes"])


# Request Models
class LpQuoteRequest(BaseModel):
    """How much baseToken pairs with baseAmount of pairedToken"""
    baseToken: Optional[str] = None
    pairedToken: Optional[str] = None
    baseAmount: Optional[Union[str, float]] = None


@router.post("/lp-quote")
async def lp_quote(
    request: LpQuoteRequest,
    service: WorkflowService = Depends(get_workflow_service)
) -> Dict[str, Any]:
    """Quote a pool-ratio amount from live reserves"""
    if not request.baseToken or not request.pairedToken or request.baseAmount in (None, ""):
        raise HTTPException(
            status_code=400,
            detail="Missing required fields: baseToken, pairedToken, baseAmount",
        )

    try:
        quote = await service.quote_lp(request.baseToken, request.pairedToken, str(request.baseAmount))
    except NotFoundError:
        raise HTTPException(status_code=404, detail="No LP exists between the specified tokens")
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to calculate LP quote: {sanitize_error_for_user(e, include_type=False)}",
        )
    return quote.model_dump(by_alias=True)
