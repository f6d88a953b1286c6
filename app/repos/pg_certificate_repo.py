"""PostgreSQL implementation of CertificateRepo."""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import CertificateRow
from app.models.certificate import Certificate
from app.repos.pg_errors import guarded_insert, storage_errors


class PgCertificateRepo:
    """Satisfies the CertificateRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, student_id: str, course_id: str) -> Certificate | None:
        stmt = select(CertificateRow).where(
            CertificateRow.student_id == student_id,
            CertificateRow.course_id == course_id,
        )
        async with storage_errors():
            row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_certificate(row)

    async def get_by_certificate_id(self, certificate_id: str) -> Certificate | None:
        stmt = select(CertificateRow).where(
            CertificateRow.certificate_id == certificate_id
        )
        async with storage_errors():
            row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_certificate(row)

    async def add(self, certificate: Certificate) -> None:
        what = f"certificate for {certificate.student_id}/{certificate.course_id}"
        async with guarded_insert(self._session, what):
            self._session.add(
                CertificateRow(
                    certificate_id=certificate.certificate_id,
                    student_id=certificate.student_id,
                    course_id=certificate.course_id,
                    issued_at=certificate.issued_at,
                )
            )

    async def list_for_student(self, student_id: str) -> list[Certificate]:
        stmt = (
            select(CertificateRow)
            .where(CertificateRow.student_id == student_id)
            .order_by(CertificateRow.issued_at.desc())
        )
        async with storage_errors():
            rows = (await self._session.execute(stmt)).scalars().all()
        return [_row_to_certificate(r) for r in rows]

    async def count_for_student(self, student_id: str) -> int:
        stmt = (
            select(func.count())
            .select_from(CertificateRow)
            .where(CertificateRow.student_id == student_id)
        )
        async with storage_errors():
            return int((await self._session.execute(stmt)).scalar_one())


def _row_to_certificate(row: CertificateRow) -> Certificate:
    return Certificate(
        certificate_id=row.certificate_id,
        student_id=row.student_id,
        course_id=row.course_id,
        issued_at=row.issued_at,
    )
