from __future__ import annotations

import mimetypes

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import FileResponse

from adforge.deps import get_local_tier
from adforge.errors import StorageTierError
from adforge.services.media_storage import IMMUTABLE_CACHE_CONTROL
from adforge.services.storage_tiers import LocalFileTier

router = APIRouter(prefix="/media", tags=["media"])


@router.get("/{path:path}")
def serve_media(path: str, tier: LocalFileTier = Depends(get_local_tier)) -> FileResponse:
    try:
        target = tier.resolve_path(path)
    except StorageTierError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Media not found")
    if not target.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Media not found")
    media_type, _ = mimetypes.guess_type(target.name)
    return FileResponse(
        target,
        media_type=media_type or "application/octet-stream",
        headers={"Cache-Control": IMMUTABLE_CACHE_CONTROL},
    )
