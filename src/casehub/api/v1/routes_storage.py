from __future__ import annotations

import mimetypes

from fastapi import APIRouter, HTTPException, Query, Response, status

from src.casehub.infra.storage.blobs import blob_storage_backend

# No API-key dependency: the signature in the URL is the credential.
router = APIRouter(prefix="/storage", tags=["storage"])


@router.get("/{bucket}/{path:path}")
async def download(
    bucket: str,
    path: str,
    expires: int = Query(...),
    signature: str = Query(...),
) -> Response:
    if not blob_storage_backend.verify_signature(bucket, path, expires, signature):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid or expired link.")
    content = blob_storage_backend.read_file(bucket, path)
    media_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
    return Response(content=content, media_type=media_type)
