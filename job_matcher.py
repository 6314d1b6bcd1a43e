"""
Candidate to job matching.

Scores a candidate profile against a job on three axes and combines them:

- Skills (80%): share of the job's skills the candidate covers.  Skills are
  lowercased and stripped, and a candidate skill counts when it equals a job
  skill or either one contains the other, so "react" covers "react.js".
  The containment rule is a heuristic and also lets "java" cover
  "javascript".
- Location (10%): plain text comparison, no geocoding.
- Experience (10%): fixed buckets over years of experience.

Pairs scoring at least ``MATCH_THRESHOLD`` are returned, best first.  Pairs
that already have a Match are never proposed again.  Missing users, profiles
or jobs produce no results instead of raising; storage errors propagate to
the caller.
"""

import logging
import math
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional

from models import UserRole
from storage import get_storage
from utils import ConfigHelper, log_processing_time

logger = logging.getLogger(__name__)

_config = ConfigHelper.get_matching_config()

SKILLS_WEIGHT = _config['skills_weight']
LOCATION_WEIGHT = _config['location_weight']
EXPERIENCE_WEIGHT = _config['experience_weight']
MATCH_THRESHOLD = _config['threshold']
JOB_FETCH_LIMIT = _config['job_limit']

NEUTRAL_EXPERIENCE_SCORE = 50

@dataclass
class MatchResult:
    job_id: int
    candidate_id: int
    recruiter_id: int
    overall_score: int
    skills_score: int
    location_score: int
    experience_score: int
    matched_skills: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return asdict(self)


def _round_half_up(value: float) -> int:
    # Python's round() is banker's rounding; scores round .5 upwards
    return int(math.floor(value + 0.5))


def _normalize_skill(skill) -> str:
    if not isinstance(skill, str):
        return ''
    return skill.lower().strip()


def calculate_skills_match(candidate_skills, job_skills) -> Dict:
    """Score how much of the job's skill list the candidate covers.

    Returns ``{'score': 0-100, 'matched_skills': [...], 'total_skills': n}``
    where ``matched_skills`` holds the normalized candidate skills.
    """
    candidate_norm = list(dict.fromkeys(
        s for s in (_normalize_skill(skill) for skill in candidate_skills or []) if s
    ))
    job_norm = [s for s in (_normalize_skill(skill) for skill in job_skills or []) if s]

    if not candidate_norm or not job_norm:
        return {'score': 0, 'matched_skills': [], 'total_skills': 0}

    matched_skills = [
        skill for skill in candidate_norm
        if any(skill == job_skill or skill in job_skill or job_skill in skill for job_skill in job_norm)
    ]

    score = 0
    if matched_skills:
        # Several candidate skills can land on one job skill, so cap at 100;
        # a non-empty overlap never rounds down to zero
        score = min(100, max(1, _round_half_up(100 * len(matched_skills) / len(job_norm))))

    return {
        'score': score,
        'matched_skills': matched_skills,
        'total_skills': len(job_norm)
    }


def calculate_location_match(candidate_location: Optional[str], job_location: Optional[str],
                             remote_ok: bool = False) -> Dict:
    """Compare free-text locations; case-sensitive, no distance computation.

    Missing, blank or non-string locations on either side score 0.
    """
    if not isinstance(candidate_location, str) or not candidate_location.strip() \
            or not isinstance(job_location, str) or not job_location.strip():
        return {'score': 0, 'distance': None}

    if candidate_location == job_location:
        return {'score': 100, 'distance': 0}

    # Partial matches, e.g. "Cape Town" and "Cape Town, South Africa"
    if candidate_location in job_location or job_location in candidate_location:
        return {'score': 80, 'distance': None}

    if remote_ok:
        return {'score': 70, 'distance': None}

    return {'score': 0, 'distance': None}


def calculate_experience_match(years: Optional[int]) -> Dict:
    """Bucket years of experience; missing or non-numeric data gets a neutral score"""
    if years is None or isinstance(years, bool) or not isinstance(years, (int, float)):
        return {'score': NEUTRAL_EXPERIENCE_SCORE, 'years': None}

    if years < 1:
        score = 20
    elif years < 3:
        score = 60
    elif years < 5:
        score = 80
    else:
        score = 100

    return {'score': score, 'years': years}


def calculate_overall_score(skills_score: int, location_score: int, experience_score: int,
                            weights: Optional[Dict[str, float]] = None) -> int:
    weights = weights or {}
    return _round_half_up(
        skills_score * weights.get('skills', SKILLS_WEIGHT) +
        location_score * weights.get('location', LOCATION_WEIGHT) +
        experience_score * weights.get('experience', EXPERIENCE_WEIGHT)
    )


def score_candidate_for_job(candidate_id: int, profile, job,
                            weights: Optional[Dict[str, float]] = None) -> MatchResult:
    """Score one candidate profile against one job, ignoring the threshold"""
    skills_match = calculate_skills_match(profile.skills, job.skills)
    location_match = calculate_location_match(profile.location, job.location, bool(job.remote_ok))
    experience_match = calculate_experience_match(profile.years_of_experience)

    overall_score = calculate_overall_score(
        skills_match['score'],
        location_match['score'],
        experience_match['score'],
        weights
    )

    return MatchResult(
        job_id=job.id,
        candidate_id=candidate_id,
        recruiter_id=job.recruiter_id,
        overall_score=overall_score,
        skills_score=skills_match['score'],
        location_score=location_match['score'],
        experience_score=experience_match['score'],
        matched_skills=skills_match['matched_skills']
    )


def _sort_results(results: List[MatchResult]) -> List[MatchResult]:
    # sorted() is stable, so ties keep their discovery order
    return sorted(results, key=lambda r: r.overall_score, reverse=True)


def match_candidate_to_jobs(candidate_id: int, storage=None, threshold: Optional[int] = None,
                            weights: Optional[Dict[str, float]] = None,
                            job_limit: Optional[int] = None) -> List[MatchResult]:
    """Find active jobs the candidate is not yet matched with and score them"""
    storage = storage or get_storage()
    threshold = MATCH_THRESHOLD if threshold is None else threshold

    candidate = storage.get_user(candidate_id)
    if not candidate or candidate.role != UserRole.CANDIDATE:
        logger.debug(f"User {candidate_id} is not a candidate, nothing to match")
        return []

    profile = storage.get_candidate_profile(candidate_id)
    if not profile:
        logger.debug(f"Candidate {candidate_id} has no profile, nothing to match")
        return []

    jobs = storage.get_jobs(limit=JOB_FETCH_LIMIT if job_limit is None else job_limit)
    matched_job_ids = {match.job_id for match in storage.get_matches_by_candidate(candidate_id)}

    results = []
    for job in jobs:
        if job.id in matched_job_ids:
            logger.debug(f"Candidate {candidate_id} already matched with job {job.id}")
            continue

        result = score_candidate_for_job(candidate_id, profile, job, weights)
        if result.overall_score >= threshold:
            results.append(result)

    logger.info(f"Candidate {candidate_id}: {len(results)} of {len(jobs)} jobs at or above {threshold}")
    return _sort_results(results)


def match_jobs_to_candidates(job_id: int, storage=None, threshold: Optional[int] = None,
                             weights: Optional[Dict[str, float]] = None) -> List[MatchResult]:
    """Find candidates not yet matched with the job and score them"""
    storage = storage or get_storage()
    threshold = MATCH_THRESHOLD if threshold is None else threshold

    job = storage.get_job(job_id)
    if not job or not job.active:
        logger.debug(f"Job {job_id} is missing or inactive, nothing to match")
        return []

    results = []
    considered = 0
    for candidate in storage.list_users_by_role(UserRole.CANDIDATE):
        profile = storage.get_candidate_profile(candidate.id)
        if not profile:
            continue
        considered += 1

        existing = storage.get_matches_by_candidate(candidate.id)
        if any(match.job_id == job.id for match in existing):
            logger.debug(f"Candidate {candidate.id} already matched with job {job.id}")
            continue

        result = score_candidate_for_job(candidate.id, profile, job, weights)
        if result.overall_score >= threshold:
            results.append(result)

    logger.info(f"Job {job_id}: {len(results)} of {considered} candidates at or above {threshold}")
    return _sort_results(results)


def create_matches_from_results(results: List[MatchResult], storage=None) -> List:
    """Persist match results as pending, fully locked matches.

    Callers must have filtered out existing pairs already; storage rejects
    duplicates.
    """
    storage = storage or get_storage()

    created = []
    for result in results:
        match = storage.create_match({
            'job_id': result.job_id,
            'candidate_id': result.candidate_id,
            'recruiter_id': result.recruiter_id,
            'score': result.overall_score,
            'unlocked_by_candidate': False,
            'unlocked_by_recruiter': False
        })
        created.append(match)

    if created:
        logger.info(f"Created {len(created)} matches")
    return created


def run_matching_for_candidate(candidate_id: int, storage=None) -> Dict:
    """Match one candidate against all active jobs and persist the results"""
    storage = storage or get_storage()
    results = match_candidate_to_jobs(candidate_id, storage=storage)
    created = create_matches_from_results(results, storage=storage) if results else []
    return {'results': results, 'matches': created}


def run_matching_for_job(job_id: int, storage=None) -> Dict:
    """Match one job against all candidates and persist the results"""
    storage = storage or get_storage()
    results = match_jobs_to_candidates(job_id, storage=storage)
    created = create_matches_from_results(results, storage=storage) if results else []
    return {'results': results, 'matches': created}


@log_processing_time
def run_matching_for_all_candidates(storage=None) -> Dict:
    """Batch sweep: match every candidate, isolating per-candidate failures.

    A failure for one candidate is logged and the sweep moves on to the
    next one.  Errors while enumerating candidates still propagate.
    """
    storage = storage or get_storage()
    summary = {'processed': 0, 'failed': 0, 'matches_created': 0}

    for candidate in storage.list_users_by_role(UserRole.CANDIDATE):
        try:
            outcome = run_matching_for_candidate(candidate.id, storage=storage)
            summary['processed'] += 1
            summary['matches_created'] += len(outcome['matches'])
        except Exception as e:
            summary['failed'] += 1
            storage.rollback()
            logger.error(f"Matching failed for candidate {candidate.id}: {e}")

    logger.info(
        f"Matching sweep finished: {summary['processed']} candidates processed, "
        f"{summary['failed']} failed, {summary['matches_created']} matches created"
    )
    return summary
