"""
Team Documents Router
Team-scoped notes and documents with tags. Reads follow the team scope,
edits belong to the author (and the top role).
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_
from pydantic import Field, field_validator
from typing import Optional, List
import logging

from database import get_db_session
from auth import require_route
from errors import AuthorizationError, NotFoundError, ValidationError
from models import Document, Team
from principals import CurrentUser
from schemas import CamelModel
from visibility import DOCUMENT_POLICY, AccessMode, ResourceFacts, ensure_access

router = APIRouter(prefix="/api/v1/documents", tags=["Documents"])
logger = logging.getLogger("teamhub.documents")

MAX_TAGS = 20


# ── Schemas ──────────────────────────────────────────────────

def _clean_tags(tags: Optional[List[str]]) -> Optional[List[str]]:
    if tags is None:
        return None
    cleaned = list(dict.fromkeys(t.strip().lower() for t in tags if t and t.strip()))
    if len(cleaned) > MAX_TAGS:
        raise ValueError(f"At most {MAX_TAGS} tags are allowed")
    return cleaned


class DocumentCreate(CamelModel):
    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=1, max_length=50000)
    team_id: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    @field_validator("tags")
    @classmethod
    def normalise_tags(cls, v):
        return _clean_tags(v)


class DocumentUpdate(CamelModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    content: Optional[str] = Field(None, min_length=1, max_length=50000)
    tags: Optional[List[str]] = None

    @field_validator("tags")
    @classmethod
    def normalise_tags(cls, v):
        return _clean_tags(v)


# ── Helpers ──────────────────────────────────────────────────

def _doc_out(d: Document) -> dict:
    return {
        "id": d.id,
        "teamId": d.team_id,
        "creatorId": d.creator_id,
        "title": d.title,
        "content": d.content,
        "tags": d.tags or [],
        "createdAt": d.created_at.isoformat() if d.created_at else None,
        "updatedAt": d.updated_at.isoformat() if d.updated_at else None,
    }


def _facts(d: Document) -> ResourceFacts:
    return ResourceFacts(owner_id=d.creator_id, team_ids=frozenset({d.team_id}))


async def _get_document(db: AsyncSession, document_id: str) -> Document:
    doc = await db.get(Document, document_id)
    if doc is None:
        raise NotFoundError("Document")
    return doc


# ============================================================
# CRUD
# ============================================================

@router.post("", status_code=201)
async def create_document(
    data: DocumentCreate,
    user: CurrentUser = Depends(require_route("documents.create")),
    db: AsyncSession = Depends(get_db_session),
):
    team_id = data.team_id or user.team_id
    if not team_id:
        raise ValidationError("teamId is required when you are not in a team")
    if await db.get(Team, team_id) is None:
        raise NotFoundError("Team")
    if not user.is_owner and team_id != user.team_id:
        raise AuthorizationError("Documents can only be created in your own team")

    doc = Document(
        team_id=team_id,
        creator_id=user.id,
        title=data.title,
        content=data.content,
        tags=data.tags,
    )
    db.add(doc)
    await db.commit()
    await db.refresh(doc)
    logger.info("Document created: %s in team %s by %s", doc.id, team_id, user.id)
    return _doc_out(doc)


@router.get("")
async def list_documents(
    team_id: Optional[str] = Query(None, alias="teamId"),
    tag: Optional[str] = None,
    search: Optional[str] = Query(None, max_length=200),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    user: CurrentUser = Depends(require_route("documents.list")),
    db: AsyncSession = Depends(get_db_session),
):
    """Own team's documents. The top role sees every team, optionally filtered."""
    filters = []
    if user.is_owner:
        if team_id:
            filters.append(Document.team_id == team_id)
    else:
        if team_id and team_id != user.team_id:
            raise AuthorizationError("Not a member of this team")
        if not user.team_id:
            return {"data": [], "total": 0}
        filters.append(Document.team_id == user.team_id)
    if search:
        pattern = f"%{search}%"
        filters.append(or_(Document.title.ilike(pattern), Document.content.ilike(pattern)))

    result = await db.execute(select(Document).where(*filters).order_by(Document.created_at.desc()))
    docs = list(result.scalars().all())
    # Tags live in a JSON column; filter in Python to stay portable across backends.
    if tag:
        wanted = tag.strip().lower()
        docs = [d for d in docs if wanted in (d.tags or [])]
    return {"data": [_doc_out(d) for d in docs[offset:offset + limit]], "total": len(docs)}


@router.get("/{document_id}")
async def get_document(
    document_id: str,
    user: CurrentUser = Depends(require_route("documents.read")),
    db: AsyncSession = Depends(get_db_session),
):
    doc = await _get_document(db, document_id)
    ensure_access(DOCUMENT_POLICY, _facts(doc), user, AccessMode.READ)
    return _doc_out(doc)


@router.patch("/{document_id}")
async def update_document(
    document_id: str,
    data: DocumentUpdate,
    user: CurrentUser = Depends(require_route("documents.update")),
    db: AsyncSession = Depends(get_db_session),
):
    doc = await _get_document(db, document_id)
    ensure_access(DOCUMENT_POLICY, _facts(doc), user, AccessMode.WRITE)
    if data.title is not None:
        doc.title = data.title
    if data.content is not None:
        doc.content = data.content
    if data.tags is not None:
        doc.tags = data.tags
    await db.commit()
    await db.refresh(doc)
    return _doc_out(doc)


@router.delete("/{document_id}", status_code=204)
async def delete_document(
    document_id: str,
    user: CurrentUser = Depends(require_route("documents.delete")),
    db: AsyncSession = Depends(get_db_session),
):
    doc = await _get_document(db, document_id)
    ensure_access(DOCUMENT_POLICY, _facts(doc), user, AccessMode.DELETE)
    await db.delete(doc)
    await db.commit()
    logger.info("Document deleted: %s by %s", document_id, user.id)
