from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.engine import Engine

from src.casehub.config import settings
from src.casehub.infra.db import models_records  # noqa: F401  registers record tables on Base
from src.casehub.infra.db.inmemory import Repositories, repositories
from src.casehub.infra.db.models import Base
from src.casehub.infra.db.session import create_sqlalchemy_engine, create_sqlalchemy_session_factory
from src.casehub.infra.db.sql_cases import (
    SqlCaseRepository,
    SqlCaseRequestRepository,
    SqlConsultationRepository,
    SqlReportRepository,
)
from src.casehub.infra.db.sql_records import (
    SqlAuditLogRepository,
    SqlCaseMessageRepository,
    SqlConsentRepository,
    SqlDocumentRepository,
    SqlNotificationRepository,
    SqlProfileRepository,
    SqlRoleRepository,
)

logger = logging.getLogger(__name__)


def build_sql_repositories(engine: Engine) -> Repositories:
    """Create SQL-backed repositories sharing one engine, creating tables if needed."""

    # Create tables if they do not exist. Real deployments should manage the
    # schema with migrations.
    Base.metadata.create_all(engine)
    session_factory = create_sqlalchemy_session_factory(engine=engine)
    return Repositories(
        cases=SqlCaseRepository(session_factory),
        requests=SqlCaseRequestRepository(session_factory),
        consultations=SqlConsultationRepository(session_factory),
        reports=SqlReportRepository(session_factory),
        documents=SqlDocumentRepository(session_factory),
        messages=SqlCaseMessageRepository(session_factory),
        notifications=SqlNotificationRepository(session_factory),
        profiles=SqlProfileRepository(session_factory),
        roles=SqlRoleRepository(session_factory),
        consents=SqlConsentRepository(session_factory),
        audit_logs=SqlAuditLogRepository(session_factory),
    )


def init_sql_repositories(database_url: Optional[str] = None) -> bool:
    """Optionally switch the shared repositories to SQL-backed implementations.

    If USE_SQL_REPOS is not enabled or DATABASE_URL is not configured, this is
    a no-op and the in-memory repositories remain active. Returns True when
    the swap happened.
    """

    if not settings.use_sql_repos:
        return False

    db_url = database_url or settings.database_url
    if not db_url:
        logger.warning("USE_SQL_REPOS is enabled but DATABASE_URL is not set; keeping in-memory repositories")
        return False

    engine = create_sqlalchemy_engine(db_url)
    repositories.replace_with(build_sql_repositories(engine))
    logger.info("SQL repositories enabled")
    return True
