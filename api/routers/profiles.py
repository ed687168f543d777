from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional
from utils.dependencies import get_gateway, get_logger, get_registry
from utils.model_catalog import MODEL_CATALOG, DEFAULT_MODEL
from utils.profile_paths import validate_profile_name


class ProfileRequest(BaseModel):
    profile: str = "default"

    @field_validator("profile", mode="before")
    @classmethod
    def _default_profile(cls, value):
        return value or "default"


class ChangeModelRequest(ProfileRequest):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    model_id: Optional[str] = Field(None, alias="modelId")


profiles_router = APIRouter()


@profiles_router.get("/models")
async def list_models():
    return {"models": MODEL_CATALOG, "default": DEFAULT_MODEL}


@profiles_router.get("/profiles")
async def list_profiles(registry=Depends(get_registry)):
    return [info.to_response() for info in await registry.list_info()]


@profiles_router.get("/profiles/{name}")
async def get_profile(name: str, registry=Depends(get_registry)):
    info = await registry.info(validate_profile_name(name))
    return info.to_response()


@profiles_router.post("/start-gateway")
async def start_gateway(
    request: ProfileRequest, gateway=Depends(get_gateway), logger=Depends(get_logger)
):
    await gateway.start(request.profile)
    logger.info(f"Gateway started for {request.profile}")
    return {"success": True}


@profiles_router.post("/stop-gateway")
async def stop_gateway(
    request: ProfileRequest, gateway=Depends(get_gateway), logger=Depends(get_logger)
):
    await gateway.stop(request.profile)
    logger.info(f"Gateway stopped for {request.profile}")
    return {"success": True}


@profiles_router.post("/restart-gateway")
async def restart_gateway(
    request: ProfileRequest, gateway=Depends(get_gateway), logger=Depends(get_logger)
):
    await gateway.restart(request.profile)
    logger.info(f"Gateway restarted for {request.profile}")
    return {"success": True}


@profiles_router.post("/delete-profile")
async def delete_profile(request: ProfileRequest, gateway=Depends(get_gateway)):
    await gateway.delete(request.profile)
    return {"success": True}


@profiles_router.post("/change-model")
async def change_model(request: ChangeModelRequest, gateway=Depends(get_gateway)):
    restarted = await gateway.change_model(request.profile, request.model_id)
    return {"success": True, "restarted": restarted}
