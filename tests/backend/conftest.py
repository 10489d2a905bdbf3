from uuid import uuid4

import pytest

from src.casehub.domain.models.profile import Identity, UserRole
from src.casehub.infra.db.inmemory import build_inmemory_repositories, repositories
from src.casehub.infra.storage.blobs import blob_storage_backend
from src.casehub.services.cases.service import case_service
from src.casehub.services.profiles.service import profile_service


@pytest.fixture(autouse=True)
def fresh_state(tmp_path, monkeypatch):
    """Give every test empty repositories and its own blob directory."""

    repositories.replace_with(build_inmemory_repositories())
    monkeypatch.setattr(blob_storage_backend, "_base", tmp_path / "blobs")
    yield
    repositories.replace_with(build_inmemory_repositories())


def _register(role: UserRole, name: str) -> Identity:
    user_id = uuid4()
    profile_service.register(
        user_id,
        role=role,
        full_name=name,
        accepted_terms=True,
        oab_number="SP-123456" if role == UserRole.ATTORNEY else None,
        crm_number="CRM-98765" if role != UserRole.ATTORNEY else None,
        specialization="Orthopedics" if role == UserRole.SPECIALIST else None,
    )
    return Identity(user_id=user_id, role=role)


@pytest.fixture
def register_user():
    return _register


@pytest.fixture
def attorney() -> Identity:
    return _register(UserRole.ATTORNEY, "Ana Advogada")


@pytest.fixture
def other_attorney() -> Identity:
    return _register(UserRole.ATTORNEY, "Bruno Advogado")


@pytest.fixture
def physician() -> Identity:
    return _register(UserRole.GENERAL_PHYSICIAN, "Carla Clinica")


@pytest.fixture
def other_physician() -> Identity:
    return _register(UserRole.GENERAL_PHYSICIAN, "Diego Clinico")


@pytest.fixture
def specialist() -> Identity:
    return _register(UserRole.SPECIALIST, "Elisa Especialista")


@pytest.fixture
def case(attorney):
    return case_service.create_case(attorney, title="Benefit claim", patient_name="Joao Silva")
