"""
Configuration de la connexion à la base de données PostgreSQL.
Chaque requête SQL est bornée par statement_timeout (SCAN_IO_TIMEOUT_SECONDS) :
un scan ne doit jamais rester bloqué sur l'annuaire ou le registre.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker

from schoolaccess.config import settings

_timeout_ms = int(settings.SCAN_IO_TIMEOUT_SECONDS * 1000)

engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    pool_timeout=settings.SCAN_IO_TIMEOUT_SECONDS,
    connect_args={
        "connect_timeout": max(1, int(settings.SCAN_IO_TIMEOUT_SECONDS)),
        "options": f"-c statement_timeout={_timeout_ms}",
    },
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dépendance FastAPI : fournit une session BDD et la ferme après usage."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
