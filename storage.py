"""
Storage collaborators for the marketplace.

Two interchangeable adapters implement the same ``Storage`` interface:

- ``MemStorage`` keeps everything in dictionaries.  It is used by tests and
  by local runs with ``STORAGE_BACKEND=memory``.
- ``DatabaseStorage`` is backed by Flask-SQLAlchemy and must be used inside
  an application context.

The matching engine only talks to this interface, so it never cares which
backend is active.  Both adapters enforce the one-match-per-(job, candidate)
rule themselves.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Dict, Iterator, List, Optional

from sqlalchemy.exc import IntegrityError

from database import db
from models import (
    CandidateProfile,
    CompanyProfile,
    DEFAULT_JOB_EXPIRY_DAYS,
    Job,
    JobType,
    Match,
    MatchStatus,
    User,
    UserRole,
)
from utils import ConfigHelper

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100


class DuplicateMatchError(Exception):
    """Raised when a second match is created for the same job and candidate"""

    def __init__(self, job_id, candidate_id):
        self.job_id = job_id
        self.candidate_id = candidate_id
        super().__init__(f"Match already exists for job {job_id} and candidate {candidate_id}")


class MatchUnlockError(Exception):
    """Raised when an unlock cannot be applied to a match"""


class MatchAccessError(MatchUnlockError):
    """Raised when a user who is not a party to a match tries to unlock it"""


def _coerce_role(role):
    if isinstance(role, UserRole):
        return role
    return UserRole(role)


def _coerce_enum(enum_cls, value):
    if value is None or isinstance(value, enum_cls):
        return value
    return enum_cls(value)


class Storage(ABC):
    """Repository interface used by the matching engine and the API layer"""

    # Users
    @abstractmethod
    def get_user(self, user_id: int) -> Optional[User]:
        pass

    @abstractmethod
    def create_user(self, data: Dict) -> User:
        pass

    @abstractmethod
    def list_users_by_role(self, role, page_size: int = DEFAULT_PAGE_SIZE) -> Iterator[User]:
        """Lazily yield every user with ``role`` in id order.

        Each call returns a fresh iterator, so the sequence can be restarted.
        """

    # Candidate profiles
    @abstractmethod
    def get_candidate_profile(self, user_id: int) -> Optional[CandidateProfile]:
        pass

    @abstractmethod
    def upsert_candidate_profile(self, user_id: int, data: Dict) -> CandidateProfile:
        pass

    # Company profiles
    @abstractmethod
    def get_company_profile(self, user_id: int) -> Optional[CompanyProfile]:
        pass

    @abstractmethod
    def create_company_profile(self, user_id: int, data: Dict) -> CompanyProfile:
        pass

    @abstractmethod
    def update_company_profile(self, user_id: int, data: Dict) -> Optional[CompanyProfile]:
        pass

    # Jobs
    @abstractmethod
    def get_job(self, job_id: int) -> Optional[Job]:
        pass

    @abstractmethod
    def get_jobs(self, limit: Optional[int] = None, offset: Optional[int] = None,
                 search: Optional[str] = None) -> List[Job]:
        """Active jobs only, newest first"""

    @abstractmethod
    def get_jobs_by_recruiter(self, recruiter_id: int) -> List[Job]:
        """Every job the recruiter posted, inactive ones included, newest first"""

    @abstractmethod
    def create_job(self, data: Dict) -> Job:
        pass

    @abstractmethod
    def update_job(self, job_id: int, data: Dict) -> Optional[Job]:
        pass

    @abstractmethod
    def deactivate_expired_jobs(self, now: Optional[datetime] = None) -> int:
        pass

    # Matches
    @abstractmethod
    def get_match(self, match_id: int) -> Optional[Match]:
        pass

    @abstractmethod
    def get_matches_by_candidate(self, candidate_id: int) -> List[Match]:
        pass

    @abstractmethod
    def get_matches_by_recruiter(self, recruiter_id: int) -> List[Match]:
        pass

    @abstractmethod
    def create_match(self, data: Dict) -> Match:
        pass

    @abstractmethod
    def update_match(self, match_id: int, data: Dict) -> Optional[Match]:
        pass

    def rollback(self):
        """Discard pending work after a failed operation"""

    def unlock_match(self, match_id: int, user_id: int) -> Match:
        """Record a completed unlock for whichever side ``user_id`` is on.

        Payment is handled elsewhere; this is called once it has cleared.
        When both sides have unlocked, the match status becomes ``unlocked``.
        """
        match = self.get_match(match_id)
        if match is None:
            raise MatchUnlockError(f"Match {match_id} not found")

        if user_id == match.candidate_id:
            flag = 'unlocked_by_candidate'
        elif user_id == match.recruiter_id:
            flag = 'unlocked_by_recruiter'
        else:
            raise MatchAccessError(f"User {user_id} is not a party to match {match_id}")

        if getattr(match, flag):
            raise MatchUnlockError(f"User {user_id} has already unlocked match {match_id}")

        match = self.update_match(match_id, {flag: True})
        if match.unlocked_by_candidate and match.unlocked_by_recruiter:
            match = self.update_match(match_id, {'status': MatchStatus.UNLOCKED})

        logger.info(f"Match {match_id} unlocked by user {user_id}")
        return match


class MemStorage(Storage):
    """Dictionary-backed storage holding transient model instances"""

    def __init__(self):
        self.users: Dict[int, User] = {}
        self.candidate_profiles: Dict[int, CandidateProfile] = {}
        self.company_profiles: Dict[int, CompanyProfile] = {}
        self.jobs: Dict[int, Job] = {}
        self.matches: Dict[int, Match] = {}
        self._next_ids = {'user': 1, 'profile': 1, 'company': 1, 'job': 1, 'match': 1}

    def _next_id(self, kind):
        value = self._next_ids[kind]
        self._next_ids[kind] += 1
        return value

    def get_user(self, user_id):
        return self.users.get(user_id)

    def create_user(self, data):
        user = User(
            id=self._next_id('user'),
            email=data['email'],
            first_name=data.get('first_name', ''),
            last_name=data.get('last_name', ''),
            role=_coerce_role(data['role']),
            location=data.get('location'),
            created_at=datetime.utcnow(),
        )
        self.users[user.id] = user
        return user

    def list_users_by_role(self, role, page_size=DEFAULT_PAGE_SIZE):
        role = _coerce_role(role)
        last_id = 0
        while True:
            page = sorted(
                (u for u in self.users.values() if u.role == role and u.id > last_id),
                key=lambda u: u.id,
            )[:page_size]
            if not page:
                return
            yield from page
            last_id = page[-1].id

    def get_candidate_profile(self, user_id):
        return self.candidate_profiles.get(user_id)

    def upsert_candidate_profile(self, user_id, data):
        now = datetime.utcnow()
        profile = self.candidate_profiles.get(user_id)
        if profile is None:
            profile = CandidateProfile(
                id=self._next_id('profile'),
                user_id=user_id,
                title=data.get('title', ''),
                skills=[],
                created_at=now,
            )
            self.candidate_profiles[user_id] = profile

        for key, value in data.items():
            if key in ('id', 'user_id'):
                continue
            setattr(profile, key, value)
        profile.updated_at = now
        return profile

    def get_company_profile(self, user_id):
        return self.company_profiles.get(user_id)

    def create_company_profile(self, user_id, data):
        if user_id in self.company_profiles:
            raise ValueError(f"Company profile already exists for user {user_id}")

        now = datetime.utcnow()
        profile = CompanyProfile(
            id=self._next_id('company'),
            user_id=user_id,
            company_name=data['company_name'],
            industry=data.get('industry'),
            description=data.get('description'),
            website=data.get('website'),
            logo_url=data.get('logo_url'),
            company_size=data.get('company_size'),
            is_premium=bool(data.get('is_premium', False)),
            created_at=now,
            updated_at=now,
        )
        self.company_profiles[user_id] = profile
        return profile

    def update_company_profile(self, user_id, data):
        profile = self.company_profiles.get(user_id)
        if profile is None:
            return None
        for key, value in data.items():
            if key in ('id', 'user_id'):
                continue
            setattr(profile, key, value)
        profile.updated_at = datetime.utcnow()
        return profile

    def get_job(self, job_id):
        return self.jobs.get(job_id)

    def get_jobs(self, limit=None, offset=None, search=None):
        result = [job for job in self.jobs.values() if job.active]

        if search:
            search_lower = search.lower()
            result = [
                job for job in result
                if search_lower in job.title.lower()
                or search_lower in job.description.lower()
                or search_lower in job.location.lower()
                or any(search_lower in skill.lower() for skill in job.skills)
            ]

        result.sort(key=lambda job: (job.created_at, job.id), reverse=True)

        start = offset or 0
        end = start + limit if limit is not None else None
        return result[start:end]

    def get_jobs_by_recruiter(self, recruiter_id):
        return sorted(
            (job for job in self.jobs.values() if job.recruiter_id == recruiter_id),
            key=lambda job: (job.created_at, job.id),
            reverse=True,
        )

    def create_job(self, data):
        now = datetime.utcnow()
        job = Job(
            id=self._next_id('job'),
            recruiter_id=data['recruiter_id'],
            company_id=data.get('company_id'),
            title=data['title'],
            description=data.get('description', ''),
            location=data['location'],
            job_type=_coerce_enum(JobType, data.get('job_type')) or JobType.FULL_TIME,
            salary=data.get('salary'),
            skills=list(data['skills']),
            remote_ok=bool(data.get('remote_ok', False)),
            active=data.get('active', True),
            created_at=now,
            updated_at=now,
            expires_at=data.get('expires_at') or now + timedelta(days=DEFAULT_JOB_EXPIRY_DAYS),
        )
        self.jobs[job.id] = job
        return job

    def update_job(self, job_id, data):
        job = self.jobs.get(job_id)
        if job is None:
            return None
        for key, value in data.items():
            if key == 'id':
                continue
            setattr(job, key, value)
        job.updated_at = datetime.utcnow()
        return job

    def deactivate_expired_jobs(self, now=None):
        now = now or datetime.utcnow()
        expired = [
            job for job in self.jobs.values()
            if job.active and job.expires_at is not None and job.expires_at <= now
        ]
        for job in expired:
            job.active = False
            job.updated_at = now
        return len(expired)

    def get_match(self, match_id):
        return self.matches.get(match_id)

    def get_matches_by_candidate(self, candidate_id):
        return sorted(
            (m for m in self.matches.values() if m.candidate_id == candidate_id),
            key=lambda m: (m.created_at, m.id),
            reverse=True,
        )

    def get_matches_by_recruiter(self, recruiter_id):
        return sorted(
            (m for m in self.matches.values() if m.recruiter_id == recruiter_id),
            key=lambda m: (m.created_at, m.id),
            reverse=True,
        )

    def create_match(self, data):
        for existing in self.matches.values():
            if existing.job_id == data['job_id'] and existing.candidate_id == data['candidate_id']:
                raise DuplicateMatchError(data['job_id'], data['candidate_id'])

        now = datetime.utcnow()
        match = Match(
            id=self._next_id('match'),
            job_id=data['job_id'],
            candidate_id=data['candidate_id'],
            recruiter_id=data['recruiter_id'],
            score=data['score'],
            status=_coerce_enum(MatchStatus, data.get('status')) or MatchStatus.PENDING,
            unlocked_by_candidate=data.get('unlocked_by_candidate', False),
            unlocked_by_recruiter=data.get('unlocked_by_recruiter', False),
            created_at=now,
            updated_at=now,
        )
        self.matches[match.id] = match
        return match

    def update_match(self, match_id, data):
        match = self.matches.get(match_id)
        if match is None:
            return None
        for key, value in data.items():
            if key == 'id':
                continue
            setattr(match, key, value)
        match.updated_at = datetime.utcnow()
        return match


class DatabaseStorage(Storage):
    """Flask-SQLAlchemy backed storage; requires an application context"""

    def rollback(self):
        db.session.rollback()

    def get_user(self, user_id):
        return db.session.get(User, user_id)

    def create_user(self, data):
        user = User(
            email=data['email'],
            first_name=data.get('first_name', ''),
            last_name=data.get('last_name', ''),
            role=_coerce_role(data['role']),
            location=data.get('location'),
        )
        db.session.add(user)
        db.session.commit()
        return user

    def list_users_by_role(self, role, page_size=DEFAULT_PAGE_SIZE):
        role = _coerce_role(role)
        last_id = 0
        # Keyset pages keep the iteration valid across commits made by the caller
        while True:
            page = User.query.filter(User.role == role, User.id > last_id)\
                .order_by(User.id)\
                .limit(page_size).all()
            if not page:
                return
            yield from page
            last_id = page[-1].id

    def get_candidate_profile(self, user_id):
        return CandidateProfile.query.filter_by(user_id=user_id).first()

    def upsert_candidate_profile(self, user_id, data):
        profile = self.get_candidate_profile(user_id)
        if profile is None:
            profile = CandidateProfile(user_id=user_id, title=data.get('title', ''), skills=[])
            db.session.add(profile)

        for key, value in data.items():
            if key in ('id', 'user_id'):
                continue
            setattr(profile, key, value)

        db.session.commit()
        return profile

    def get_company_profile(self, user_id):
        return CompanyProfile.query.filter_by(user_id=user_id).first()

    def create_company_profile(self, user_id, data):
        profile = CompanyProfile(
            user_id=user_id,
            company_name=data['company_name'],
            industry=data.get('industry'),
            description=data.get('description'),
            website=data.get('website'),
            logo_url=data.get('logo_url'),
            company_size=data.get('company_size'),
            is_premium=bool(data.get('is_premium', False)),
        )
        db.session.add(profile)
        db.session.commit()
        return profile

    def update_company_profile(self, user_id, data):
        profile = self.get_company_profile(user_id)
        if profile is None:
            return None
        for key, value in data.items():
            if key in ('id', 'user_id'):
                continue
            setattr(profile, key, value)
        db.session.commit()
        return profile

    def get_job(self, job_id):
        return db.session.get(Job, job_id)

    def get_jobs(self, limit=None, offset=None, search=None):
        query = Job.query.filter(Job.active.is_(True))

        if search:
            search_term = f"%{search}%"
            query = query.filter(
                db.or_(
                    Job.title.ilike(search_term),
                    Job.description.ilike(search_term),
                    Job.location.ilike(search_term),
                    # Skills are a JSON array; match against its text form
                    db.cast(Job.skills, db.String).ilike(search_term)
                )
            )

        query = query.order_by(Job.created_at.desc(), Job.id.desc())

        if offset is not None:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)

        return query.all()

    def get_jobs_by_recruiter(self, recruiter_id):
        return Job.query.filter_by(recruiter_id=recruiter_id)\
            .order_by(Job.created_at.desc(), Job.id.desc()).all()

    def create_job(self, data):
        job = Job(
            recruiter_id=data['recruiter_id'],
            company_id=data.get('company_id'),
            title=data['title'],
            description=data.get('description', ''),
            location=data['location'],
            job_type=_coerce_enum(JobType, data.get('job_type')) or JobType.FULL_TIME,
            salary=data.get('salary'),
            skills=list(data['skills']),
            remote_ok=bool(data.get('remote_ok', False)),
            active=data.get('active', True),
        )
        if data.get('expires_at'):
            job.expires_at = data['expires_at']

        db.session.add(job)
        db.session.commit()
        return job

    def update_job(self, job_id, data):
        job = self.get_job(job_id)
        if job is None:
            return None
        for key, value in data.items():
            if key == 'id':
                continue
            setattr(job, key, value)
        db.session.commit()
        return job

    def deactivate_expired_jobs(self, now=None):
        now = now or datetime.utcnow()
        try:
            count = Job.query.filter(
                Job.active.is_(True),
                Job.expires_at.isnot(None),
                Job.expires_at <= now
            ).update({Job.active: False, Job.updated_at: now}, synchronize_session=False)
            db.session.commit()
            return count
        except Exception:
            db.session.rollback()
            raise

    def get_match(self, match_id):
        return db.session.get(Match, match_id)

    def get_matches_by_candidate(self, candidate_id):
        return Match.query.filter_by(candidate_id=candidate_id)\
            .order_by(Match.created_at.desc(), Match.id.desc()).all()

    def get_matches_by_recruiter(self, recruiter_id):
        return Match.query.filter_by(recruiter_id=recruiter_id)\
            .order_by(Match.created_at.desc(), Match.id.desc()).all()

    def create_match(self, data):
        match = Match(
            job_id=data['job_id'],
            candidate_id=data['candidate_id'],
            recruiter_id=data['recruiter_id'],
            score=data['score'],
            status=_coerce_enum(MatchStatus, data.get('status')) or MatchStatus.PENDING,
            unlocked_by_candidate=data.get('unlocked_by_candidate', False),
            unlocked_by_recruiter=data.get('unlocked_by_recruiter', False),
        )
        db.session.add(match)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            logger.warning(f"Duplicate match rejected for job {data['job_id']} and candidate {data['candidate_id']}")
            raise
        return match

    def update_match(self, match_id, data):
        match = self.get_match(match_id)
        if match is None:
            return None
        for key, value in data.items():
            if key == 'id':
                continue
            setattr(match, key, value)
        db.session.commit()
        return match


_memory_storage = None


def get_storage() -> Storage:
    """Return the storage backend selected by ``STORAGE_BACKEND``"""
    global _memory_storage

    if ConfigHelper.get_storage_backend() == 'memory':
        if _memory_storage is None:
            _memory_storage = MemStorage()
        return _memory_storage

    return DatabaseStorage()
