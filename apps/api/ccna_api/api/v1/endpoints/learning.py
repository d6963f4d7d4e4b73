from __future__ import annotations

from fastapi import APIRouter, HTTPException

from ccna_api.schemas.learning import DomainResponse
from ccna_api.utils.ccna_domains import CCNA_DOMAINS

router = APIRouter(prefix="/learning", tags=["learning"])


@router.get("/domains")
def list_domains():
    return {"items": CCNA_DOMAINS}


@router.get("/domains/{domain_id}", response_model=DomainResponse)
def get_domain(domain_id: int):
    for domain in CCNA_DOMAINS:
        if domain["id"] == domain_id:
            return domain
    raise HTTPException(status_code=404, detail="Domain not found")
