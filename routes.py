import logging
from flask import request, jsonify
from database import db
from models import UserRole, JobType
from storage import get_storage, MatchAccessError, MatchUnlockError, DuplicateMatchError
from sqlalchemy.exc import IntegrityError
from job_matcher import (
    run_matching_for_candidate,
    run_matching_for_job,
    run_matching_for_all_candidates,
)
from cv_parser import parse_resume_with_ai
from utils import (
    clean_skill_list,
    parse_bool,
    parse_id,
    parse_int_arg,
    validate_company_data,
    validate_job_data,
    validate_profile_data,
    validate_user_data,
)

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ('title', 'summary', 'skills', 'location', 'years_of_experience', 'education')
COMPANY_FIELDS = ('company_name', 'industry', 'description', 'website', 'logo_url', 'company_size')
JOB_UPDATE_FIELDS = ('title', 'description', 'location', 'job_type', 'salary', 'skills', 'remote_ok', 'active')

def _isoformat(value):
    return value.isoformat() if value else None

def _user_dict(user):
    return {
        'id': user.id,
        'email': user.email,
        'first_name': user.first_name,
        'last_name': user.last_name,
        'role': user.role.value,
        'location': user.location,
        'created_at': _isoformat(user.created_at)
    }

def _profile_dict(profile):
    return {
        'user_id': profile.user_id,
        'title': profile.title,
        'summary': profile.summary,
        'skills': profile.skills or [],
        'location': profile.location,
        'years_of_experience': profile.years_of_experience,
        'education': profile.education,
        'updated_at': _isoformat(profile.updated_at)
    }

def _company_dict(company):
    return {
        'id': company.id,
        'user_id': company.user_id,
        'company_name': company.company_name,
        'industry': company.industry,
        'description': company.description,
        'website': company.website,
        'logo_url': company.logo_url,
        'company_size': company.company_size,
        'is_premium': bool(company.is_premium),
        'updated_at': _isoformat(company.updated_at)
    }

def _contact_dict(user):
    return {
        'id': user.id,
        'first_name': user.first_name,
        'last_name': user.last_name,
        'email': user.email
    }

def _anonymous_candidate(candidate):
    return {
        'id': candidate.id,
        'first_name': 'Anonymous',
        'last_name': 'Candidate',
        'email': None
    }

def _job_dict(job):
    return {
        'id': job.id,
        'recruiter_id': job.recruiter_id,
        'company_id': job.company_id,
        'title': job.title,
        'description': job.description,
        'location': job.location,
        'job_type': job.job_type.value if job.job_type else None,
        'salary': job.salary,
        'skills': job.skills or [],
        'remote_ok': bool(job.remote_ok),
        'active': bool(job.active),
        'created_at': _isoformat(job.created_at),
        'expires_at': _isoformat(job.expires_at)
    }

def _match_dict(match):
    return {
        'id': match.id,
        'job_id': match.job_id,
        'candidate_id': match.candidate_id,
        'recruiter_id': match.recruiter_id,
        'status': match.status.value,
        'score': match.score,
        'unlocked_by_candidate': bool(match.unlocked_by_candidate),
        'unlocked_by_recruiter': bool(match.unlocked_by_recruiter),
        'created_at': _isoformat(match.created_at)
    }

def _error(message, status_code):
    return jsonify({'success': False, 'error': message}), status_code

def register_routes(app):
    @app.route('/api/health', methods=['GET'])
    def api_health():
        return jsonify({'success': True, 'status': 'ok'})

    # Users and candidate profiles
    @app.route('/api/users', methods=['POST'])
    def api_create_user():
        """Create a candidate or recruiter account"""
        try:
            data = request.get_json(silent=True)
            if not data:
                return _error('No data provided', 400)

            errors = validate_user_data(data)
            if errors:
                return jsonify({'success': False, 'errors': errors}), 400

            user = get_storage().create_user({
                'email': data['email'],
                'first_name': data['first_name'],
                'last_name': data['last_name'],
                'role': data['role'],
                'location': data.get('location')
            })
            return jsonify({'success': True, 'user': _user_dict(user)}), 201

        except IntegrityError:
            db.session.rollback()
            return _error('A user with this email already exists', 409)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error creating user: {e}")
            return _error(str(e), 500)

    @app.route('/api/candidates/<int:user_id>/profile', methods=['GET'])
    def api_get_profile(user_id):
        profile = get_storage().get_candidate_profile(user_id)
        if not profile:
            return _error('Profile not found', 404)
        return jsonify({'success': True, 'profile': _profile_dict(profile)})

    @app.route('/api/candidates/<int:user_id>/profile', methods=['PUT'])
    def api_upsert_profile(user_id):
        """Create or update a candidate profile"""
        try:
            storage = get_storage()
            data = request.get_json(silent=True)
            if not data:
                return _error('No data provided', 400)

            user = storage.get_user(user_id)
            if not user:
                return _error('User not found', 404)
            if user.role != UserRole.CANDIDATE:
                return _error('Only candidates have candidate profiles', 403)

            creating = storage.get_candidate_profile(user_id) is None
            errors = validate_profile_data(data, creating=creating)
            if errors:
                return jsonify({'success': False, 'errors': errors}), 400

            updates = {key: data[key] for key in PROFILE_FIELDS if key in data}
            if 'skills' in updates:
                updates['skills'] = clean_skill_list(updates['skills'])

            profile = storage.upsert_candidate_profile(user_id, updates)
            return jsonify({'success': True, 'profile': _profile_dict(profile)}), 201 if creating else 200

        except Exception as e:
            db.session.rollback()
            logger.error(f"Error saving profile for user {user_id}: {e}")
            return _error(str(e), 500)

    @app.route('/api/candidates/<int:user_id>/resume', methods=['POST'])
    def api_parse_resume(user_id):
        """Parse resume text into the profile, then re-run matching"""
        try:
            storage = get_storage()
            data = request.get_json(silent=True) or {}
            resume_text = data.get('resume_text', '')
            if not isinstance(resume_text, str) or not resume_text.strip():
                return _error('Missing required field: resume_text', 400)

            profile = storage.get_candidate_profile(user_id)
            if not profile:
                return _error('Profile not found', 404)

            parsed = parse_resume_with_ai(resume_text)

            updates = {'resume_parsed': parsed}
            if parsed['skills']:
                # Keep skills the candidate entered by hand
                merged = list(profile.skills or [])
                known = {skill.lower() for skill in merged}
                merged.extend(skill for skill in parsed['skills'] if skill.lower() not in known)
                updates['skills'] = merged
            if parsed['years_of_experience'] is not None:
                updates['years_of_experience'] = parsed['years_of_experience']
            if parsed['education']:
                updates['education'] = parsed['education']

            profile = storage.upsert_candidate_profile(user_id, updates)
            outcome = run_matching_for_candidate(user_id, storage=storage)

            return jsonify({
                'success': True,
                'profile': _profile_dict(profile),
                'parsed': parsed,
                'matches_created': len(outcome['matches'])
            })

        except Exception as e:
            db.session.rollback()
            logger.error(f"Error parsing resume for user {user_id}: {e}")
            return _error(str(e), 500)

    # Jobs
    @app.route('/api/jobs', methods=['GET'])
    def api_jobs():
        """API endpoint to get active jobs"""
        try:
            jobs = get_storage().get_jobs(
                limit=parse_int_arg(request.args.get('limit')),
                offset=parse_int_arg(request.args.get('offset')),
                search=request.args.get('search') or None
            )
            jobs_data = [_job_dict(job) for job in jobs]

            return jsonify({
                'success': True,
                'jobs': jobs_data,
                'count': len(jobs_data)
            })
        except Exception as e:
            logger.error(f"Error listing jobs: {e}")
            return _error(str(e), 500)

    @app.route('/api/jobs/<int:job_id>', methods=['GET'])
    def api_job_detail(job_id):
        job = get_storage().get_job(job_id)
        if not job:
            return _error('Job not found', 404)
        return jsonify({'success': True, 'job': _job_dict(job)})

    @app.route('/api/jobs', methods=['POST'])
    def api_create_job():
        """Create a job posting and match it against existing candidates"""
        try:
            storage = get_storage()
            data = request.get_json(silent=True)
            if not data:
                return _error('No data provided', 400)

            recruiter_id = parse_id(data.get('recruiter_id'))
            if recruiter_id is None:
                return _error('Missing or invalid field: recruiter_id', 400)

            recruiter = storage.get_user(recruiter_id)
            if not recruiter:
                return _error('Recruiter not found', 404)
            if recruiter.role != UserRole.RECRUITER:
                return _error('Only recruiters can post jobs', 403)

            company = storage.get_company_profile(recruiter.id)
            if not company:
                return _error('You must create a company profile first', 400)

            errors = validate_job_data(data)
            if errors:
                return jsonify({'success': False, 'errors': errors}), 400

            job = storage.create_job({
                'recruiter_id': recruiter.id,
                'company_id': company.id,
                'title': data['title'],
                'description': data['description'],
                'location': data['location'],
                'job_type': data.get('job_type'),
                'salary': data.get('salary'),
                'skills': clean_skill_list(data['skills']),
                'remote_ok': parse_bool(data.get('remote_ok'))
            })

        except Exception as e:
            db.session.rollback()
            logger.error(f"Error creating job: {e}")
            return _error(str(e), 500)

        # The job is saved; a matching failure is left to the nightly sweep
        matches_created = 0
        try:
            outcome = run_matching_for_job(job.id, storage=storage)
            matches_created = len(outcome['matches'])
        except Exception as e:
            storage.rollback()
            logger.error(f"Job {job.id} created but matching failed: {e}")

        return jsonify({
            'success': True,
            'job': _job_dict(job),
            'matches_created': matches_created
        }), 201

    @app.route('/api/jobs/<int:job_id>', methods=['PUT'])
    def api_update_job(job_id):
        """Update a job posting; only the recruiter who posted it may"""
        try:
            storage = get_storage()
            data = request.get_json(silent=True)
            if not data:
                return _error('No data provided', 400)

            recruiter_id = parse_id(data.get('recruiter_id'))
            if recruiter_id is None:
                return _error('Missing or invalid field: recruiter_id', 400)

            job = storage.get_job(job_id)
            if not job:
                return _error('Job not found', 404)
            if job.recruiter_id != recruiter_id:
                return _error('You can only update your own jobs', 403)

            updates = {key: data[key] for key in JOB_UPDATE_FIELDS if key in data}
            errors = validate_job_data(updates, partial=True)
            if errors:
                return jsonify({'success': False, 'errors': errors}), 400

            if 'skills' in updates:
                updates['skills'] = clean_skill_list(updates['skills'])
            if 'job_type' in updates:
                updates['job_type'] = JobType(updates['job_type']) if updates['job_type'] else JobType.FULL_TIME
            for flag in ('remote_ok', 'active'):
                if flag in updates:
                    updates[flag] = parse_bool(updates[flag])

            job = storage.update_job(job_id, updates)
            return jsonify({'success': True, 'job': _job_dict(job)})

        except Exception as e:
            db.session.rollback()
            logger.error(f"Error updating job {job_id}: {e}")
            return _error(str(e), 500)

    @app.route('/api/jobs/<int:job_id>/deactivate', methods=['POST'])
    def api_deactivate_job(job_id):
        try:
            job = get_storage().update_job(job_id, {'active': False})
            if not job:
                return _error('Job not found', 404)
            return jsonify({'success': True, 'job': _job_dict(job)})
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error deactivating job {job_id}: {e}")
            return _error(str(e), 500)

    # Recruiters and company profiles
    def _get_recruiter(storage, user_id):
        user = storage.get_user(user_id)
        if not user:
            return None, _error('User not found', 404)
        if user.role != UserRole.RECRUITER:
            return None, _error('Only recruiters have company profiles and job listings', 403)
        return user, None

    @app.route('/api/recruiters/<int:user_id>/jobs', methods=['GET'])
    def api_recruiter_jobs(user_id):
        """All jobs a recruiter posted, including inactive ones"""
        storage = get_storage()
        recruiter, error = _get_recruiter(storage, user_id)
        if error:
            return error

        jobs_data = [_job_dict(job) for job in storage.get_jobs_by_recruiter(recruiter.id)]
        return jsonify({'success': True, 'jobs': jobs_data, 'count': len(jobs_data)})

    @app.route('/api/recruiters/<int:user_id>/company', methods=['GET'])
    def api_get_company(user_id):
        company = get_storage().get_company_profile(user_id)
        if not company:
            return _error('Company profile not found', 404)
        return jsonify({'success': True, 'company': _company_dict(company)})

    @app.route('/api/recruiters/<int:user_id>/company', methods=['POST'])
    def api_create_company(user_id):
        """Create the recruiter's company profile"""
        try:
            storage = get_storage()
            data = request.get_json(silent=True)
            if not data:
                return _error('No data provided', 400)

            recruiter, error = _get_recruiter(storage, user_id)
            if error:
                return error
            if storage.get_company_profile(recruiter.id):
                return _error('Company profile already exists', 409)

            errors = validate_company_data(data, creating=True)
            if errors:
                return jsonify({'success': False, 'errors': errors}), 400

            fields = {key: data[key] for key in COMPANY_FIELDS if key in data}
            company = storage.create_company_profile(recruiter.id, fields)
            return jsonify({'success': True, 'company': _company_dict(company)}), 201

        except IntegrityError:
            db.session.rollback()
            return _error('Company profile already exists', 409)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error creating company profile for user {user_id}: {e}")
            return _error(str(e), 500)

    @app.route('/api/recruiters/<int:user_id>/company', methods=['PUT'])
    def api_update_company(user_id):
        """Update the recruiter's company profile"""
        try:
            storage = get_storage()
            data = request.get_json(silent=True)
            if not data:
                return _error('No data provided', 400)

            recruiter, error = _get_recruiter(storage, user_id)
            if error:
                return error
            if not storage.get_company_profile(recruiter.id):
                return _error('Company profile not found', 404)

            errors = validate_company_data(data)
            if errors:
                return jsonify({'success': False, 'errors': errors}), 400

            updates = {key: data[key] for key in COMPANY_FIELDS if key in data}
            company = storage.update_company_profile(recruiter.id, updates)
            return jsonify({'success': True, 'company': _company_dict(company)})

        except Exception as e:
            db.session.rollback()
            logger.error(f"Error updating company profile for user {user_id}: {e}")
            return _error(str(e), 500)


    # Matching
    @app.route('/api/matching/candidates/<int:candidate_id>', methods=['POST'])
    def api_match_candidate(candidate_id):
        """Run matching for one candidate and persist the new matches"""
        try:
            outcome = run_matching_for_candidate(candidate_id)
            return jsonify({
                'success': True,
                'results': [result.to_dict() for result in outcome['results']],
                'matches_created': len(outcome['matches'])
            })
        except (IntegrityError, DuplicateMatchError) as e:
            db.session.rollback()
            return _error(f'Match conflict: {e}', 409)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error matching candidate {candidate_id}: {e}")
            return _error(str(e), 500)

    @app.route('/api/matching/jobs/<int:job_id>', methods=['POST'])
    def api_match_job(job_id):
        """Run matching for one job and persist the new matches"""
        try:
            outcome = run_matching_for_job(job_id)
            return jsonify({
                'success': True,
                'results': [result.to_dict() for result in outcome['results']],
                'matches_created': len(outcome['matches'])
            })
        except (IntegrityError, DuplicateMatchError) as e:
            db.session.rollback()
            return _error(f'Match conflict: {e}', 409)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error matching job {job_id}: {e}")
            return _error(str(e), 500)

    @app.route('/api/matching/run', methods=['POST'])
    def api_run_matching():
        """Run the full matching sweep over all candidates"""
        try:
            summary = run_matching_for_all_candidates()
            return jsonify({'success': True, 'summary': summary})
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error running matching sweep: {e}")
            return _error(str(e), 500)

    # Matches
    @app.route('/api/matches/candidate/<int:candidate_id>', methods=['GET'])
    def api_candidate_matches(candidate_id):
        """Matches for a candidate, with job details"""
        storage = get_storage()
        matches_data = []
        for match in storage.get_matches_by_candidate(candidate_id):
            job = storage.get_job(match.job_id)
            item = _match_dict(match)
            item['job'] = _job_dict(job) if job else None
            matches_data.append(item)

        return jsonify({'success': True, 'matches': matches_data, 'count': len(matches_data)})

    @app.route('/api/matches/recruiter/<int:recruiter_id>', methods=['GET'])
    def api_recruiter_matches(recruiter_id):
        """Matches for a recruiter; candidates stay anonymous until unlocked"""
        storage = get_storage()
        matches_data = []
        for match in storage.get_matches_by_recruiter(recruiter_id):
            job = storage.get_job(match.job_id)
            candidate = storage.get_user(match.candidate_id)
            item = _match_dict(match)
            item['job'] = _job_dict(job) if job else None
            if candidate:
                if match.unlocked_by_recruiter:
                    item['candidate'] = _contact_dict(candidate)
                else:
                    item['candidate'] = _anonymous_candidate(candidate)
            matches_data.append(item)

        return jsonify({'success': True, 'matches': matches_data, 'count': len(matches_data)})

    @app.route('/api/matches/<int:match_id>', methods=['GET'])
    def api_match_detail(match_id):
        """One match as seen by one of its parties.

        The candidate sees the recruiter's contact details and company once
        they have unlocked; the recruiter sees the candidate's contact
        details and profile once they have unlocked.
        """
        user_id = parse_id(request.args.get('user_id'))
        if user_id is None:
            return _error('Missing or invalid query parameter: user_id', 400)

        storage = get_storage()
        match = storage.get_match(match_id)
        if not match:
            return _error('Match not found', 404)
        if user_id not in (match.candidate_id, match.recruiter_id):
            return _error('Not authorized to access this match', 403)

        job = storage.get_job(match.job_id)
        item = _match_dict(match)
        item['job'] = _job_dict(job) if job else None

        if user_id == match.candidate_id:
            if match.unlocked_by_candidate:
                recruiter = storage.get_user(match.recruiter_id)
                company = storage.get_company_profile(match.recruiter_id)
                item['recruiter'] = _contact_dict(recruiter) if recruiter else None
                item['company'] = _company_dict(company) if company else None
        else:
            candidate = storage.get_user(match.candidate_id)
            if match.unlocked_by_recruiter:
                profile = storage.get_candidate_profile(match.candidate_id)
                item['candidate'] = _contact_dict(candidate) if candidate else None
                item['profile'] = _profile_dict(profile) if profile else None
            elif candidate:
                item['candidate'] = _anonymous_candidate(candidate)

        return jsonify({'success': True, 'match': item})

    @app.route('/api/matches/<int:match_id>/unlock', methods=['POST'])
    def api_unlock_match(match_id):
        """Record a paid unlock for the calling side of a match"""
        try:
            data = request.get_json(silent=True) or {}
            user_id = parse_id(data.get('user_id'))
            if user_id is None:
                return _error('Missing or invalid field: user_id', 400)

            storage = get_storage()
            if not storage.get_match(match_id):
                return _error('Match not found', 404)

            match = storage.unlock_match(match_id, user_id)
            return jsonify({'success': True, 'match': _match_dict(match)})

        except MatchAccessError as e:
            return _error(str(e), 403)
        except MatchUnlockError as e:
            return _error(str(e), 400)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Error unlocking match {match_id}: {e}")
            return _error(str(e), 500)
