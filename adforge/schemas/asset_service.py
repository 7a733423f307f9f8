from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict


class AssetServiceCreateFromUriIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: Literal["image", "video", "text"]
    source: Literal["generated"] = "generated"
    primary_uri: str
    file_name: str
    metadata_json: Optional[dict[str, Any]] = None


class AssetServiceAssetOut(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    primary_url: str


class AssetServiceErrorBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code: Optional[str] = None
    message: Optional[str] = None
    request_id: Optional[str] = None


class AssetServiceErrorEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    error: Optional[AssetServiceErrorBody] = None
