"""ProgressEngine: the library boundary.

Hosts (the worker, a webhook handler, an admin script) build one engine
per unit of work and call it; the engine wires the components over one
set of repositories so that everything an operation writes goes through
the same session / transaction.

    async with session_scope() as session:
        engine = ProgressEngine.for_session(session, records=records)
        await engine.ingest(event)

ProgressEngine.in_memory() builds the same object over dict-backed repos
for tests and local runs.
"""

from __future__ import annotations

import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import SETTINGS
from app.core.metrics import OPERATION_DURATION
from app.models.badge import BadgeProgress, BadgeUnlockResult
from app.models.certificate import Certificate, CompletionStatus, GenerateResult
from app.models.leaderboard import Leaderboard
from app.models.ledger import GrantResult, Reconciliation, XPReason
from app.models.progress import (
    IngestResult,
    ProgressEvent,
    ProgressSummary,
    StreakUpdate,
)
from app.repos.badge_repo import BadgeRepo, InMemoryBadgeRepo
from app.repos.certificate_repo import CertificateRepo, InMemoryCertificateRepo
from app.repos.pg_badge_repo import PgBadgeRepo
from app.repos.pg_certificate_repo import PgCertificateRepo
from app.repos.pg_progress_repo import PgProgressRepo
from app.repos.progress_repo import InMemoryProgressRepo, ProgressRepo
from app.services.badge_catalog import BadgeCatalog, load_badge_catalog
from app.services.badge_evaluator import BadgeEvaluator
from app.services.cache import CacheService, NullCacheService, cache_service
from app.services.certificate_issuer import CertificateIssuer
from app.services.ingestor import Ingestor
from app.services.leaderboard import LeaderboardRanker
from app.services.learning_records import InMemoryLearningRecords, LearningRecords
from app.services.levels import xp_to_next_level
from app.services.streak_tracker import StreakTracker
from app.services.user_locks import InMemoryUserLocks, UserLocks, user_locks
from app.services.xp_ledger import XPLedger


class ProgressEngine:
    def __init__(
        self,
        *,
        progress: ProgressRepo,
        badges: BadgeRepo,
        certificates: CertificateRepo,
        records: LearningRecords,
        catalog: BadgeCatalog,
        locks: UserLocks,
        cache: CacheService,
        cache_ttl: int,
    ) -> None:
        self._progress = progress
        self.records = records
        self.ledger = XPLedger(progress)
        self.streaks = StreakTracker(progress, locks, self.ledger)
        self.badges = BadgeEvaluator(catalog, badges, progress, records, self.ledger)
        self.issuer = CertificateIssuer(certificates, records, self.ledger, self.badges)
        self.leaderboards = LeaderboardRanker(progress, records, cache, cache_ttl)
        self.ingestor = Ingestor(self.ledger, self.streaks, self.badges, self.issuer)
        self._certificates = certificates

    # --- construction ---

    @classmethod
    def in_memory(
        cls,
        *,
        records: LearningRecords | None = None,
        catalog: BadgeCatalog | None = None,
        locks: UserLocks | None = None,
        cache: CacheService | None = None,
        cache_ttl: int = 30,
    ) -> ProgressEngine:
        """Fully in-process engine.

        Without an explicit ``cache`` leaderboards are computed on every
        read, which is what tests asserting fresh standings want.
        """
        return cls(
            progress=InMemoryProgressRepo(),
            badges=InMemoryBadgeRepo(),
            certificates=InMemoryCertificateRepo(),
            records=records if records is not None else InMemoryLearningRecords(),
            catalog=catalog if catalog is not None else load_badge_catalog(),
            locks=locks if locks is not None else InMemoryUserLocks(),
            cache=cache if cache is not None else NullCacheService(),
            cache_ttl=cache_ttl,
        )

    @classmethod
    def for_session(
        cls,
        session: AsyncSession,
        *,
        records: LearningRecords,
        catalog: BadgeCatalog | None = None,
    ) -> ProgressEngine:
        """Engine over PostgreSQL repositories sharing ``session``.

        Locks and the leaderboard cache are the process-wide singletons
        (Redis-backed when REDIS_URL is set).
        """
        return cls(
            progress=PgProgressRepo(session),
            badges=PgBadgeRepo(session),
            certificates=PgCertificateRepo(session),
            records=records,
            catalog=(
                catalog
                if catalog is not None
                else load_badge_catalog(SETTINGS.badge_catalog_path)
            ),
            locks=user_locks,
            cache=cache_service,
            cache_ttl=SETTINGS.leaderboard_cache_ttl,
        )

    # --- ingestion ---

    async def ingest(self, event: ProgressEvent) -> IngestResult:
        return await self.ingestor.ingest(event)

    async def ingest_payload(self, payload: dict) -> IngestResult:
        return await self.ingestor.ingest_payload(payload)

    # --- XP ---

    async def grant(
        self,
        user_id: str,
        reason: XPReason,
        reference_id: str,
        amount: int | None = None,
    ) -> GrantResult:
        with OPERATION_DURATION.labels(operation="grant").time():
            return await self.ledger.grant(user_id, reason, reference_id, amount)

    async def correct(
        self, user_id: str, reference_id: str, amount: int
    ) -> GrantResult:
        return await self.ledger.correct(user_id, reference_id, amount)

    async def award_daily_login(
        self, user_id: str, day: datetime.date | None = None
    ) -> GrantResult:
        day = day or datetime.datetime.now(datetime.UTC).date()
        return await self.ledger.award_daily_login(user_id, day)

    async def reconcile(self, user_id: str) -> Reconciliation:
        return await self.ledger.reconcile(user_id)

    # --- streaks and badges ---

    async def record_activity(
        self, user_id: str, activity_date: datetime.date
    ) -> StreakUpdate:
        with OPERATION_DURATION.labels(operation="record_activity").time():
            return await self.streaks.record_activity(user_id, activity_date)

    async def reevaluate(self, user_id: str) -> list[BadgeUnlockResult]:
        with OPERATION_DURATION.labels(operation="reevaluate").time():
            return await self.badges.reevaluate(user_id)

    async def badge_progress(self, user_id: str) -> list[BadgeProgress]:
        return await self.badges.progress(user_id)

    # --- certificates ---

    async def completion_status(
        self, student_id: str, course_id: str
    ) -> CompletionStatus:
        return await self.issuer.completion_status(student_id, course_id)

    async def generate(self, student_id: str, course_id: str) -> GenerateResult:
        with OPERATION_DURATION.labels(operation="generate").time():
            return await self.issuer.generate(student_id, course_id)

    async def get_certificate(self, certificate_id: str) -> Certificate | None:
        return await self.issuer.get_certificate(certificate_id)

    async def list_certificates(self, student_id: str) -> list[Certificate]:
        return await self.issuer.list_certificates(student_id)

    # --- leaderboards ---

    async def global_leaderboard(
        self, limit: int, around_user_id: str | None = None, window: int = 2
    ) -> Leaderboard:
        with OPERATION_DURATION.labels(operation="global_leaderboard").time():
            return await self.leaderboards.global_leaderboard(
                limit, around_user_id, window
            )

    async def course_leaderboard(
        self,
        course_id: str,
        limit: int,
        around_user_id: str | None = None,
        window: int = 2,
    ) -> Leaderboard:
        with OPERATION_DURATION.labels(operation="course_leaderboard").time():
            return await self.leaderboards.course_leaderboard(
                course_id, limit, around_user_id, window
            )

    # --- read model ---

    async def summary(self, user_id: str, recent: int = 10) -> ProgressSummary:
        agg = await self._progress.get_aggregate(user_id)
        total = 0 if agg is None else agg.total_xp
        return ProgressSummary(
            user_id=user_id,
            total_xp=total,
            level=1 if agg is None else agg.level,
            xp_to_next_level=xp_to_next_level(total),
            current_streak=0 if agg is None else agg.current_streak,
            longest_streak=0 if agg is None else agg.longest_streak,
            last_activity_date=None if agg is None else agg.last_activity_date,
            badges=await self.badges.earned(user_id),
            recent_xp=await self.ledger.recent_entries(user_id, limit=recent),
            certificates_earned=await self._certificates.count_for_student(user_id),
        )
