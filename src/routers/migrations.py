from fastapi import APIRouter, Depends, Header, Query, Request
from sqlalchemy.orm import Session

from src.core.database import get_db
from src.core.errors import NotFoundError
from src.core.security import (
    ACTION_MIGRATE,
    Identity,
    SecurityTokenValidator,
    get_current_identity,
    get_token_validator,
    require_authorized,
    verify_api_key,
)
from src.dtos.migration_dto import (
    CanRunResponse,
    ExecutionResult,
    MigrationDefinitionRead,
    StatusSnapshot,
)
from src.services.migrations.manager import MigrationManager

router = APIRouter(
    prefix="/api/v1/migrations",
    tags=["migrations"],
    dependencies=[Depends(verify_api_key)],
)


def get_migration_manager(request: Request, db: Session = Depends(get_db)) -> MigrationManager:
    """One manager per request over the application-wide registry."""
    return MigrationManager(request.app.state.migration_registry, db)


def _authorized(identity: Identity, phase: str, key: str | None = None) -> Identity:
    require_authorized(identity, ACTION_MIGRATE, phase=phase, key=key)
    return identity


@router.get("", response_model=list[MigrationDefinitionRead])
def list_migrations(
    identity: Identity = Depends(get_current_identity),
    manager: MigrationManager = Depends(get_migration_manager),
):
    _authorized(identity, "list")
    return [MigrationDefinitionRead(**d.to_dict()) for d in manager.get_migrations()]


@router.get("/{key}", response_model=MigrationDefinitionRead)
def get_migration(
    key: str,
    identity: Identity = Depends(get_current_identity),
    manager: MigrationManager = Depends(get_migration_manager),
):
    _authorized(identity, "get", key)
    definition = manager.get_migration(key)
    if definition is None or not manager.is_migration_available(key):
        raise NotFoundError(f"Unknown migration: {key}", phase="get", key=key)
    return MigrationDefinitionRead(**definition.to_dict())


@router.get("/{key}/status", response_model=StatusSnapshot)
def get_migration_status(
    key: str,
    identity: Identity = Depends(get_current_identity),
    manager: MigrationManager = Depends(get_migration_manager),
):
    _authorized(identity, "status", key)
    return manager.get_migration_status(key).unwrap()


@router.get("/{key}/can-run", response_model=CanRunResponse)
def can_run_migration(
    key: str,
    identity: Identity = Depends(get_current_identity),
    manager: MigrationManager = Depends(get_migration_manager),
):
    """Returns ``can_run: true`` or a 412 naming the failed precondition."""
    _authorized(identity, "can_run", key)
    return CanRunResponse(can_run=manager.can_run_migration(key).unwrap())


@router.post("/{key}/run", response_model=ExecutionResult)
def run_migration(
    key: str,
    batch_number: int = Query(default=0, ge=0),
    x_action_token: str | None = Header(default=None),
    identity: Identity = Depends(get_current_identity),
    manager: MigrationManager = Depends(get_migration_manager),
    tokens: SecurityTokenValidator = Depends(get_token_validator),
):
    """Run one batch; call again while ``has_more`` is true."""
    _authorized(identity, "run", key)
    tokens.verify(x_action_token, identity, ACTION_MIGRATE, phase="run")
    return manager.run_migration(key, batch_number).unwrap()
