from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List

class LoginRequest(BaseModel):
    username: str
    password: str

class UserOut(BaseModel):
    id: str
    username: str
    role: str
    is_active: bool = True
    created_at: Optional[str] = None

class TokenResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    expires_at: datetime
    user: UserOut

class UserCreate(BaseModel):
    username: str
    password: str
    role: str = "user"

class PrincipalOut(BaseModel):
    user_id: str
    username: str
    role: str

class FileInfo(BaseModel):
    name: str
    path: str
    size: int
    is_dir: bool
    modified: datetime
    mime_type: Optional[str] = None
    permissions: str = ""

class ListResponse(BaseModel):
    files: List[FileInfo]
    path: str

class UploadFailureOut(BaseModel):
    filename: str
    error: str
    kind: Optional[str] = None

class UploadResponse(BaseModel):
    uploaded: List[FileInfo]
    failed: List[UploadFailureOut]
    created_directories: List[str] = []

class MkdirRequest(BaseModel):
    path: str
    recursive: bool = True

class PathChange(BaseModel):
    # `from` is a keyword, so the field is aliased
    model_config = ConfigDict(populate_by_name=True)

    from_path: str = Field(alias="from")
    to: str

class DeleteResponse(BaseModel):
    message: str
    path: str

class SearchHitOut(BaseModel):
    path: str
    name: str
    is_dir: bool
    score: float

class SearchResponse(BaseModel):
    query: str
    path: str
    results: List[SearchHitOut]

class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
