"""
FastAPI dependencies shared by the attempt routes.
"""

from typing import Callable, Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from exam_engine import config
from exam_engine.catalog import SqlTestCatalog, TestCatalog
from exam_engine.database import get_db
from exam_engine.errors import Unauthenticated
from exam_engine.services import section_clock


def get_caller_id(
    student_id: Optional[str] = Header(None, alias=config.STUDENT_ID_HEADER),
) -> str:
    """Opaque student identity forwarded by the auth service."""
    if not student_id or not student_id.strip():
        raise Unauthenticated("Missing caller identity header {}".format(config.STUDENT_ID_HEADER))
    return student_id.strip()


def get_catalog(db: Session = Depends(get_db)) -> TestCatalog:
    return SqlTestCatalog(db)


def get_clock() -> Callable:
    """Source of 'now' for the engine; overridden with a frozen clock in tests."""
    return section_clock.utcnow
