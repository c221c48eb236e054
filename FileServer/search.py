from fastapi import APIRouter, Depends, Query

from core.accounts.rbac import Principal
from core.storage.service import FileStore

from .dependencies import get_current_user, get_store
from .schemas import SearchResponse

router = APIRouter()

@router.get("", response_model=SearchResponse)
def search(
    query: str = Query(default=""),
    path: str = Query(default=""),
    principal: Principal = Depends(get_current_user),
    store: FileStore = Depends(get_store),
):
    hits = store.search(query, path)
    return {"query": query, "path": store.resolver.normalize(path), "results": [h.to_dict() for h in hits]}
