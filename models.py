import os
from datetime import datetime, timedelta
from database import db
from sqlalchemy import Enum
import enum

DEFAULT_JOB_EXPIRY_DAYS = int(os.environ.get("JOB_EXPIRY_DAYS", "30"))

class UserRole(enum.Enum):
    CANDIDATE = "candidate"
    RECRUITER = "recruiter"

class MatchStatus(enum.Enum):
    PENDING = "pending"
    UNLOCKED = "unlocked"
    REJECTED = "rejected"

class JobType(enum.Enum):
    FULL_TIME = "full-time"
    PART_TIME = "part-time"
    CONTRACT = "contract"
    REMOTE = "remote"

def _default_expiry():
    return datetime.utcnow() + timedelta(days=DEFAULT_JOB_EXPIRY_DAYS)

class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(120), unique=True, nullable=False)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    role = db.Column(Enum(UserRole), nullable=False, index=True)
    location = db.Column(db.String(200))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

class CandidateProfile(db.Model):
    __tablename__ = 'candidate_profiles'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), unique=True, nullable=False)
    title = db.Column(db.String(200), nullable=False)
    summary = db.Column(db.Text)

    # Free-text skills, compared case-insensitively by the matcher
    skills = db.Column(db.JSON, default=list)
    location = db.Column(db.String(200))
    years_of_experience = db.Column(db.Integer)
    education = db.Column(db.String(100))
    resume_parsed = db.Column(db.JSON)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

class CompanyProfile(db.Model):
    __tablename__ = 'company_profiles'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), unique=True, nullable=False)
    company_name = db.Column(db.String(200), nullable=False)
    industry = db.Column(db.String(100))
    description = db.Column(db.Text)
    website = db.Column(db.String(300))
    logo_url = db.Column(db.String(300))
    company_size = db.Column(db.String(50))
    is_premium = db.Column(db.Boolean, default=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

class Job(db.Model):
    __tablename__ = 'jobs'

    id = db.Column(db.Integer, primary_key=True)
    recruiter_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    company_id = db.Column(db.Integer, db.ForeignKey('company_profiles.id'))
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False)
    location = db.Column(db.String(200), nullable=False)
    job_type = db.Column(Enum(JobType), default=JobType.FULL_TIME)
    salary = db.Column(db.String(100))
    skills = db.Column(db.JSON, nullable=False)
    remote_ok = db.Column(db.Boolean, default=False)

    # Jobs are deactivated after expiry, never hard-deleted
    active = db.Column(db.Boolean, default=True, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    expires_at = db.Column(db.DateTime, default=_default_expiry)

    matches = db.relationship('Match', backref='job', lazy=True)

class Match(db.Model):
    __tablename__ = 'matches'

    id = db.Column(db.Integer, primary_key=True)
    job_id = db.Column(db.Integer, db.ForeignKey('jobs.id'), nullable=False)
    candidate_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    recruiter_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    status = db.Column(Enum(MatchStatus), default=MatchStatus.PENDING, nullable=False)
    score = db.Column(db.Integer, nullable=False)  # 0-100

    # Each side unlocks the other's contact details independently
    unlocked_by_candidate = db.Column(db.Boolean, default=False)
    unlocked_by_recruiter = db.Column(db.Boolean, default=False)
    candidate_notes = db.Column(db.Text)
    recruiter_notes = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Unique constraint to prevent duplicate matches
    __table_args__ = (db.UniqueConstraint('job_id', 'candidate_id'),)
