"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database, rebuilt for every test
- Clinic / professional / patient / lead fixtures
- HTTPX AsyncClient with the clinic header set
"""
import os
import uuid
from typing import AsyncGenerator, Generator

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.orm import Session

# Must be set before app.core.config is imported
os.environ["DATABASE_URL"] = os.getenv("TEST_DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ["INTERNAL_SECRET"] = "test-internal-secret"
os.environ["MESSAGING_DRY_RUN"] = "False"
os.environ["CLINIC_TIMEZONE"] = "America/Sao_Paulo"

from app.main import app
from app.db.base import Base
from app.db.session import engine, SessionLocal
from app.core.deps import get_db, CLINIC_HEADER
from app.db.enums import LeadSource
from app.db.models import Clinic, ClinicSettings, Lead, Patient, Professional


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Creates a database session on a freshly created schema.

    App code commits freely; the schema is dropped after each test.
    """
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()

    yield session

    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def test_clinic(db: Session) -> Clinic:
    """Create a test clinic with WhatsApp and Instagram credentials."""
    clinic = Clinic(
        id=uuid.uuid4(),
        name="Clínica Sorriso",
        slug=f"test-clinic-{uuid.uuid4().hex[:8]}",
    )
    db.add(clinic)
    db.flush()
    db.add(
        ClinicSettings(
            clinic_id=clinic.id,
            whatsapp_token="wa-token",
            whatsapp_phone_number_id="1234567890",
            instagram_access_token="ig-token",
        )
    )
    db.commit()
    return clinic


@pytest.fixture(scope="function")
def other_clinic(db: Session) -> Clinic:
    """A second tenant, for isolation checks."""
    clinic = Clinic(
        id=uuid.uuid4(),
        name="Outra Clínica",
        slug=f"other-clinic-{uuid.uuid4().hex[:8]}",
    )
    db.add(clinic)
    db.commit()
    return clinic


@pytest.fixture(scope="function")
def test_professional(db: Session, test_clinic: Clinic) -> Professional:
    professional = Professional(
        id=uuid.uuid4(),
        clinic_id=test_clinic.id,
        name="Dra. Ana",
        specialty="Ortodontia",
    )
    db.add(professional)
    db.commit()
    return professional


@pytest.fixture(scope="function")
def test_patient(db: Session, test_clinic: Clinic) -> Patient:
    patient = Patient(
        id=uuid.uuid4(),
        clinic_id=test_clinic.id,
        name="Maria",
        phone="+5511999990000",
    )
    db.add(patient)
    db.commit()
    return patient


@pytest.fixture(scope="function")
def test_lead(db: Session, test_clinic: Clinic) -> Lead:
    lead = Lead(
        id=uuid.uuid4(),
        clinic_id=test_clinic.id,
        name="João",
        phone="+5511988880000",
        source=LeadSource.WEBSITE.value,
    )
    db.add(lead)
    db.commit()
    return lead


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """
    Create AsyncClient without a clinic header (for auth and internal endpoints).
    """
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def clinic_client(
    db: Session,
    test_clinic: Clinic,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Create AsyncClient that acts on behalf of test_clinic.
    """
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={CLINIC_HEADER: str(test_clinic.id)},
    ) as c:
        yield c

    app.dependency_overrides.clear()


# =============================================================================
# Follow-up Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def make_rule(db: Session, test_clinic: Clinic):
    """Factory for follow-up rules in test_clinic."""
    from app.db.enums import FollowUpTrigger, TargetType
    from app.db.models import FollowUpRule

    def _make(
        trigger: FollowUpTrigger = FollowUpTrigger.PATIENT_CREATED,
        target_type: TargetType = TargetType.PATIENT,
        delay_days: int = 0,
        message_template: str = "Olá {nome}, bem-vindo à {clinica}!",
        active: bool = True,
        clinic_id: uuid.UUID | None = None,
        name: str = "Boas-vindas",
    ) -> FollowUpRule:
        rule = FollowUpRule(
            clinic_id=clinic_id or test_clinic.id,
            name=name,
            trigger=trigger.value,
            target_type=target_type.value,
            delay_days=delay_days,
            message_template=message_template,
            active=active,
        )
        db.add(rule)
        db.commit()
        return rule

    return _make
