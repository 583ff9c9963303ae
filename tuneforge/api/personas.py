"""Persona endpoints. Every route acts on the caller's own personas."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..core.auth import AuthContext, require_auth
from ..database import get_db
from ..schemas.persona import PersonaCreate, PersonaListResponse, PersonaResponse
from ..services.persona_service import PersonaService
from ..services.provider_client import get_provider

router = APIRouter(prefix="/api/personas", tags=["personas"])


@router.post("", response_model=PersonaResponse, status_code=201)
def create_persona(
    body: PersonaCreate,
    db: Session = Depends(get_db),
    provider=Depends(get_provider),
    auth: AuthContext = Depends(require_auth),
):
    """Turn one of the caller's songs into a reusable provider voice."""
    return PersonaService(db, provider).create_persona(auth, body)


@router.get("", response_model=PersonaListResponse)
def list_personas(
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
):
    personas = PersonaService(db).list_personas(auth.user_id)
    return PersonaListResponse(
        personas=[PersonaResponse.model_validate(p) for p in personas], total=len(personas)
    )


@router.post("/{persona_id}/favorite", response_model=PersonaResponse)
def toggle_favorite(
    persona_id: str,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
):
    return PersonaService(db).toggle_favorite(auth, persona_id)


@router.delete("/{persona_id}", status_code=204)
def delete_persona(
    persona_id: str,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
):
    PersonaService(db).delete_persona(auth, persona_id)
