import os
import sys
import tempfile
from pathlib import Path

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))

_TMP_DIR = Path(tempfile.mkdtemp(prefix="adforge-tests-"))

os.environ.setdefault("INTERNAL_API_TOKEN", "internal_token")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TMP_DIR / 'test_adforge.db'}")
os.environ.setdefault("PUBLIC_BASE_URL", "https://adforge.test")
os.environ.setdefault("LOCAL_MEDIA_ROOT", str(_TMP_DIR / "media"))
os.environ.setdefault("HOSTING_BLOCK_PRIVATE_NETWORKS", "false")
os.environ.setdefault("HOSTING_BACKOFF_BASE_SECONDS", "0")
# Keep the suite hermetic even when a developer shell carries real credentials.
for _name in (
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "GEMINI_API_KEY",
    "REPLICATE_API_TOKEN",
    "MEDIA_STORAGE_BUCKET",
    "ASSET_SERVICE_BASE_URL",
    "ASSET_SERVICE_TOKEN",
    "CAMPAIGN_SERVICE_BASE_URL",
):
    os.environ[_name] = ""

from sqlalchemy import delete  # noqa: E402

from adforge.db.base import SessionLocal, init_db  # noqa: E402
from adforge.db.models import (  # noqa: E402
    ContentPerformance,
    CreditAccount,
    CreditLedgerEntry,
    CreditReservation,
    HostedAsset,
    LearningPattern,
)

_TABLES = (
    CreditLedgerEntry,
    CreditReservation,
    CreditAccount,
    LearningPattern,
    ContentPerformance,
)


def _clear(session) -> None:
    for model in _TABLES:
        session.execute(delete(model))
    # Successors reference their predecessors; delete the chain heads first.
    while session.query(HostedAsset).count():
        referenced = {
            row[0] for row in session.query(HostedAsset.supersedes_asset_id).filter(
                HostedAsset.supersedes_asset_id.isnot(None)
            )
        }
        session.execute(delete(HostedAsset).where(HostedAsset.id.notin_(referenced)))
    session.commit()


@pytest.fixture(autouse=True)
def db_session():
    init_db()
    session = SessionLocal()
    _clear(session)
    try:
        yield session
    finally:
        session.rollback()
        _clear(session)
        session.close()


@pytest.fixture()
def media_root(tmp_path):
    root = tmp_path / "media"
    root.mkdir()
    return root
