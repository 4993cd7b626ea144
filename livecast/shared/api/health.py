from fastapi import APIRouter, Request

from .utils import ApiSuccess

router = APIRouter()


@router.get("/health", response_model=ApiSuccess)
async def health(request: Request):
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        return ApiSuccess(results="OK")
    return ApiSuccess(results=registry.stats())
