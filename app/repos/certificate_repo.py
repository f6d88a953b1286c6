from __future__ import annotations

from typing import Protocol

from app.models.certificate import Certificate
from app.services.errors import ConflictRetryable


class CertificateRepo(Protocol):
    async def get(self, student_id: str, course_id: str) -> Certificate | None: ...
    async def get_by_certificate_id(
        self, certificate_id: str
    ) -> Certificate | None: ...
    async def add(self, certificate: Certificate) -> None: ...
    async def list_for_student(self, student_id: str) -> list[Certificate]: ...
    async def count_for_student(self, student_id: str) -> int: ...


class InMemoryCertificateRepo:
    def __init__(self) -> None:
        self._by_pair: dict[tuple[str, str], Certificate] = {}
        self._by_certificate_id: dict[str, Certificate] = {}

    async def get(self, student_id: str, course_id: str) -> Certificate | None:
        return self._by_pair.get((student_id, course_id))

    async def get_by_certificate_id(self, certificate_id: str) -> Certificate | None:
        return self._by_certificate_id.get(certificate_id)

    async def add(self, certificate: Certificate) -> None:
        """Raises ConflictRetryable if the pair or the public id is taken."""
        pair = (certificate.student_id, certificate.course_id)
        if pair in self._by_pair:
            raise ConflictRetryable(f"certificate already issued for {pair}")
        if certificate.certificate_id in self._by_certificate_id:
            raise ConflictRetryable("certificate id collision")
        self._by_pair[pair] = certificate
        self._by_certificate_id[certificate.certificate_id] = certificate

    async def list_for_student(self, student_id: str) -> list[Certificate]:
        certs = [c for c in self._by_pair.values() if c.student_id == student_id]
        return sorted(certs, key=lambda c: c.issued_at, reverse=True)

    async def count_for_student(self, student_id: str) -> int:
        return sum(1 for c in self._by_pair.values() if c.student_id == student_id)
