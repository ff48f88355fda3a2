"""Upload grant API route."""
from dataclasses import asdict

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from snapshare.database import get_db
from snapshare.errors import RateLimited
from snapshare.schemas.upload import UploadGrantListResponse, UploadGrantRequest
from snapshare.services.identity import client_address, hash_address
from snapshare.services.object_storage import ObjectStorageService, get_object_storage
from snapshare.services.quota_ledger import QuotaLedger, get_quota_ledger
from snapshare.services.upload_grants import UploadGrantIssuer

router = APIRouter(prefix="/api", tags=["uploads"])


@router.post("/create-presigned-upload-url", response_model=UploadGrantListResponse)
async def create_presigned_upload_url(
    body: UploadGrantRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorageService = Depends(get_object_storage),
    ledger: QuotaLedger = Depends(get_quota_ledger),
):
    """Issue one presigned PUT per requested size, after size and quota checks."""
    issuer = UploadGrantIssuer(storage)
    sizes = issuer.validate_batch(body.sizes())

    identity = hash_address(client_address(request))
    decision = await ledger.check_and_reserve(db, identity, len(sizes), sum(sizes))
    if not decision.allowed:
        raise RateLimited(decision)

    grants = issuer.issue_batch(sizes)
    return {"success": True, "data": [asdict(g) for g in grants]}
