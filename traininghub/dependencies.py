"""FastAPI dependency injection providers."""

from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import TrainingHubConfig, get_config
from .database import get_session, get_session_factory
from .utils.logging import get_logger
from .utils.security import decode_access_token

_dep_logger = get_logger("dependencies")

security_scheme = HTTPBearer(auto_error=False)

_config_instance: TrainingHubConfig | None = None
_export_processor = None
_retention_manager = None


def get_app_config() -> TrainingHubConfig:
    """Get the application config singleton."""
    global _config_instance
    if _config_instance is None:
        _config_instance = get_config()
    return _config_instance


async def get_db(config: TrainingHubConfig = Depends(get_app_config)):
    """Get an async database session."""
    async for session in get_session(config):
        yield session


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
    config: TrainingHubConfig = Depends(get_app_config),
) -> dict:
    """Validate the bearer JWT and return its payload (``sub`` = user id, ``role``)."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_access_token(
        credentials.credentials,
        config.secret_key,
        config.jwt_algorithm,
    )
    if payload is None or not payload.get("sub"):
        _dep_logger.debug("token_rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return payload


def get_export_processor():
    """Get the Export Processor singleton."""
    global _export_processor
    if _export_processor is None:
        from .export.processor import ExportProcessor
        config = get_app_config()
        factory = get_session_factory(config)
        _export_processor = ExportProcessor(db_session_factory=factory, config=config)
    return _export_processor


def get_retention_manager():
    """Get the Export Retention Manager singleton."""
    global _retention_manager
    if _retention_manager is None:
        from .maintenance.retention import ExportRetentionManager
        config = get_app_config()
        _retention_manager = ExportRetentionManager(get_session_factory(config))
    return _retention_manager
