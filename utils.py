import os
import re
import logging
import functools
from datetime import datetime
from typing import List, Dict, Optional
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

VALID_ROLES = {'candidate', 'recruiter'}
VALID_JOB_TYPES = {'full-time', 'part-time', 'contract', 'remote'}

def validate_email(email: str) -> bool:
    """Validate email address format"""
    if not email:
        return False

    pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    return bool(re.match(pattern, email))

def clean_skill_list(skills) -> List[str]:
    """Keep non-empty string skills, stripped, in their original order"""
    if not skills or not isinstance(skills, list):
        return []

    cleaned = []
    for skill in skills:
        if isinstance(skill, str) and skill.strip():
            cleaned.append(skill.strip())
    return cleaned

def parse_bool(value, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')

def log_processing_time(func):
    """Decorator to log function processing time"""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start_time = datetime.now()

        try:
            result = func(*args, **kwargs)
            processing_time = (datetime.now() - start_time).total_seconds()

            logger.info(f"{func.__name__} completed in {processing_time:.2f} seconds")
            return result

        except Exception as e:
            processing_time = (datetime.now() - start_time).total_seconds()

            logger.error(f"{func.__name__} failed after {processing_time:.2f} seconds: {e}")
            raise

    return wrapper

class ConfigHelper:
    """Helper class for configuration management"""

    @staticmethod
    def get_storage_backend() -> str:
        return os.getenv('STORAGE_BACKEND', 'database').strip().lower()

    @staticmethod
    def get_matching_config():
        """Get matching weights, threshold and paging from environment"""
        return {
            'threshold': int(os.getenv('MATCH_THRESHOLD', '60')),
            'skills_weight': float(os.getenv('MATCH_SKILLS_WEIGHT', '0.8')),
            'location_weight': float(os.getenv('MATCH_LOCATION_WEIGHT', '0.1')),
            'experience_weight': float(os.getenv('MATCH_EXPERIENCE_WEIGHT', '0.1')),
            'job_limit': int(os.getenv('MATCH_JOB_LIMIT', '100'))
        }

    @staticmethod
    def get_scheduler_config():
        """Get batch job timing from environment"""
        return {
            'matching_run_time': os.getenv('MATCHING_RUN_TIME', '02:00'),
            'report_time': os.getenv('REPORT_TIME', '08:00'),
            'run_matching_on_startup': parse_bool(os.getenv('RUN_MATCHING_ON_STARTUP'), default=True)
        }

    @staticmethod
    def get_smtp_config():
        """Get SMTP configuration from environment"""
        recipients = [r.strip() for r in os.getenv('REPORT_RECIPIENTS', '').split(',') if r.strip()]
        return {
            'enabled': parse_bool(os.getenv('SMTP_ENABLED'), default=False),
            'smtp_server': os.getenv('SMTP_SERVER', 'smtp.gmail.com'),
            'smtp_port': int(os.getenv('SMTP_PORT', '587')),
            'smtp_user': os.getenv('SMTP_USER', ''),
            'smtp_password': os.getenv('SMTP_PASSWORD', ''),
            'recipients': recipients
        }

    @staticmethod
    def get_openai_config():
        """Get OpenAI configuration from environment"""
        return {
            'api_key': os.getenv('OPENAI_API_KEY', ''),
            'model': os.getenv('OPENAI_MODEL', 'gpt-5')
        }

# Validation helpers
def validate_user_data(data: Dict) -> List[str]:
    """Validate user data and return list of errors"""
    errors = []

    if not data.get('email'):
        errors.append("Email is required")
    elif not validate_email(data['email']):
        errors.append("Invalid email format")

    if not data.get('first_name'):
        errors.append("First name is required")

    if not data.get('last_name'):
        errors.append("Last name is required")

    if data.get('role') not in VALID_ROLES:
        errors.append("Role must be 'candidate' or 'recruiter'")

    return errors

def _string_field_errors(data: Dict, fields, label: str) -> List[str]:
    errors = []
    for field in fields:
        value = data.get(field)
        if value is not None and not isinstance(value, str):
            errors.append(f"{label} {field.replace('_', ' ')} must be a string")
    return errors

def validate_profile_data(data: Dict, creating: bool = False) -> List[str]:
    """Validate candidate profile data and return list of errors"""
    errors = _string_field_errors(data, ('title', 'summary', 'location', 'education'), 'Profile')

    if creating and not data.get('title'):
        errors.append("Profile title is required")

    if 'skills' in data and not isinstance(data['skills'], list):
        errors.append("Skills must be a list")

    years = data.get('years_of_experience')
    if years is not None:
        if isinstance(years, bool) or not isinstance(years, int) or years < 0:
            errors.append("Years of experience must be a non-negative integer")

    return errors

def validate_company_data(data: Dict, creating: bool = False) -> List[str]:
    """Validate company profile data and return list of errors"""
    errors = _string_field_errors(
        data,
        ('company_name', 'industry', 'description', 'website', 'logo_url', 'company_size'),
        'Company'
    )

    if (creating or 'company_name' in data) and not data.get('company_name'):
        errors.append("Company name is required")

    return errors

def validate_job_data(data: Dict, partial: bool = False) -> List[str]:
    """Validate job data and return list of errors.

    With ``partial`` only the fields present in ``data`` are checked, for
    updates to an existing job.
    """
    errors = _string_field_errors(data, ('title', 'description', 'location', 'salary'), 'Job')

    for field, message in (('title', "Job title is required"),
                           ('description', "Job description is required"),
                           ('location', "Job location is required")):
        if (not partial or field in data) and not data.get(field):
            errors.append(message)

    if (not partial or 'skills' in data) and not clean_skill_list(data.get('skills')):
        errors.append("At least one skill is required")

    job_type = data.get('job_type')
    if job_type and job_type not in VALID_JOB_TYPES:
        errors.append(f"Job type must be one of: {', '.join(sorted(VALID_JOB_TYPES))}")

    return errors

def parse_int_arg(value) -> Optional[int]:
    """Parse an optional integer query argument, ignoring garbage"""
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None

def parse_id(value) -> Optional[int]:
    """Parse a positive record id from JSON or a query string.

    Accepts ints and digit strings; booleans, floats and anything else
    give None.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str) and re.fullmatch(r'[0-9]+', value.strip()):
        parsed = int(value.strip())
        return parsed if parsed > 0 else None
    return None
