from __future__ import annotations

from fastapi import APIRouter, Depends

from together import functions
from together.auth import Caller, optional_caller
from together.schemas import CallableRequest

router = APIRouter()


@router.get("/v1/callables")
async def list_callables():
    return {"items": sorted(functions.CALLABLES)}


@router.post("/v1/callables/{name}")
async def invoke_callable(name: str, payload: CallableRequest, caller: Caller | None = Depends(optional_caller)):
    result = await functions.dispatch(name, caller, payload.data)
    return {"result": result}
