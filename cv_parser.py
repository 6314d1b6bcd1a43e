import json
import logging
import re
from openai import OpenAI
from utils import ConfigHelper, clean_skill_list

logger = logging.getLogger(__name__)

COMMON_SKILLS = [
    'javascript', 'typescript', 'react', 'angular', 'vue', 'node.js', 'python',
    'java', 'c#', 'c++', 'php', 'ruby', 'go', 'sql', 'nosql', 'mongodb',
    'postgresql', 'mysql', 'aws', 'azure', 'gcp', 'devops', 'docker',
    'kubernetes', 'git', 'agile', 'scrum', 'project management', 'marketing',
    'sales', 'finance', 'accounting', 'hr', 'recruitment', 'customer service'
]

EXPERIENCE_PATTERN = re.compile(r'(\d+)\s*(?:years?|yrs?)\s*(?:of)?\s*experience', re.IGNORECASE)

_openai_client = None

def _skill_in_text(skill, text_lower):
    # Word-ish boundaries so "go" does not fire inside "good"
    pattern = r'(?<![a-z0-9])' + re.escape(skill) + r'(?![a-z0-9])'
    return re.search(pattern, text_lower) is not None

def extract_skills(resume_text):
    """Pick known skills out of free text"""
    text_lower = (resume_text or '').lower()
    return [skill for skill in COMMON_SKILLS if _skill_in_text(skill, text_lower)]

def extract_years_of_experience(resume_text):
    """Find statements like '5 years of experience'"""
    match = EXPERIENCE_PATTERN.search(resume_text or '')
    if match:
        return int(match.group(1))
    return None

def extract_education(resume_text):
    """Coarse education level from degree keywords"""
    text = resume_text or ''

    if 'PhD' in text or 'Doctorate' in text:
        return 'PhD'
    if 'Master' in text or 'M.Sc' in text or re.search(r'\bMA\b', text):
        return "Master's Degree"
    if 'Bachelor' in text or 'B.Sc' in text or re.search(r'\bBA\b', text):
        return "Bachelor's Degree"
    if 'Diploma' in text or 'Certificate' in text:
        return 'Diploma/Certificate'
    return None

def parse_resume_text(resume_text):
    """Parse resume text with keyword and regex heuristics"""
    return {
        'skills': extract_skills(resume_text),
        'years_of_experience': extract_years_of_experience(resume_text),
        'education': extract_education(resume_text)
    }

def _get_openai_client():
    global _openai_client
    if _openai_client is None:
        _openai_client = OpenAI(api_key=ConfigHelper.get_openai_config()['api_key'])
    return _openai_client

def parse_resume_with_ai(resume_text):
    """Parse resume text using OpenAI, falling back to heuristics.

    The AI path only runs when ``OPENAI_API_KEY`` is set.
    """
    openai_config = ConfigHelper.get_openai_config()
    if not openai_config['api_key']:
        return parse_resume_text(resume_text)

    try:
        system_prompt = """You are an expert CV/Resume parser. Extract the following information from the CV text and return it as a JSON object:

{
  "skills": ["List of technical and professional skills"],
  "years_of_experience": "Total years of experience (number only)",
  "education": "Highest education level"
}

If information is not available, use null or empty arrays."""

        response = _get_openai_client().chat.completions.create(
            model=openai_config['model'],
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": f"Please parse this CV:\n\n{resume_text}"}
            ],
            response_format={"type": "json_object"}
        )

        result = json.loads(response.choices[0].message.content or '{}')

        years = result.get('years_of_experience')
        if isinstance(years, str):
            years_match = re.search(r'\d+', years)
            years = int(years_match.group()) if years_match else None
        elif not isinstance(years, int) or isinstance(years, bool):
            years = None

        education = result.get('education')
        return {
            'skills': clean_skill_list(result.get('skills')),
            'years_of_experience': years,
            'education': education if isinstance(education, str) else None
        }

    except Exception as e:
        logger.error(f"Error parsing resume with AI, using keyword parser: {e}")
        return parse_resume_text(resume_text)
