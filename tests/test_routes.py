import pytest
from unittest.mock import patch


def create_user(client, role, email, **extra):
    payload = {"email": email, "first_name": "Sipho", "last_name": "Dlamini", "role": role}
    payload.update(extra)
    response = client.post("/api/users", json=payload)
    assert response.status_code == 201
    return response.get_json()["user"]


def create_recruiter(client, email, company_name="Ubuntu Tech"):
    recruiter = create_user(client, "recruiter", email, first_name="Naledi", last_name="Khumalo")
    response = client.post(f"/api/recruiters/{recruiter['id']}/company", json={
        "company_name": company_name,
        "industry": "Software",
        "website": "https://ubuntu-tech.example.com",
    })
    assert response.status_code == 201
    return recruiter


def create_profile(client, user_id, **extra):
    payload = {
        "title": "Frontend Developer",
        "skills": ["JavaScript", "React", "Node.js"],
        "location": "Cape Town, South Africa",
        "years_of_experience": 5,
    }
    payload.update(extra)
    return client.put(f"/api/candidates/{user_id}/profile", json=payload)


def create_job(client, recruiter_id, **extra):
    payload = {
        "recruiter_id": recruiter_id,
        "title": "React Engineer",
        "description": "Own the customer dashboard",
        "location": "Cape Town, South Africa",
        "skills": ["React", "JavaScript", "TypeScript", "Redux", "Node.js"],
        "remote_ok": True,
    }
    payload.update(extra)
    return client.post("/api/jobs", json=payload)


@pytest.fixture
def marketplace(client):
    """A candidate with a profile, a recruiter and one matching job"""
    candidate = create_user(client, "candidate", "candidate@example.com")
    recruiter = create_recruiter(client, "recruiter@example.com")
    assert create_profile(client, candidate["id"]).status_code == 201
    job_response = create_job(client, recruiter["id"])
    assert job_response.status_code == 201
    return candidate, recruiter, job_response.get_json()


class TestUsersApi:
    """User and profile endpoints"""

    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.get_json()["status"] == "ok"

    def test_create_user_validation(self, client):
        response = client.post("/api/users", json={"email": "bad", "role": "admin"})

        assert response.status_code == 400
        errors = response.get_json()["errors"]
        assert "Invalid email format" in errors
        assert "Role must be 'candidate' or 'recruiter'" in errors

    def test_duplicate_email(self, client):
        create_user(client, "candidate", "dup@example.com")
        response = client.post("/api/users", json={
            "email": "dup@example.com", "first_name": "A", "last_name": "B", "role": "candidate",
        })
        assert response.status_code == 409

    def test_profile_create_then_update(self, client):
        user = create_user(client, "candidate", "p@example.com")

        created = create_profile(client, user["id"])
        updated = client.put(f"/api/candidates/{user['id']}/profile", json={"skills": [" Go ", "", "Rust"]})

        assert created.status_code == 201
        assert updated.status_code == 200
        assert updated.get_json()["profile"]["skills"] == ["Go", "Rust"]
        fetched = client.get(f"/api/candidates/{user['id']}/profile").get_json()["profile"]
        assert fetched["title"] == "Frontend Developer"

    def test_profile_requires_title_on_create(self, client):
        user = create_user(client, "candidate", "t@example.com")
        response = client.put(f"/api/candidates/{user['id']}/profile", json={"skills": ["Go"]})
        assert response.status_code == 400

    def test_profile_for_recruiter_forbidden(self, client):
        recruiter = create_recruiter(client, "r@example.com")
        assert create_profile(client, recruiter["id"]).status_code == 403

    def test_profile_for_missing_user(self, client):
        assert create_profile(client, 999).status_code == 404
        assert client.get("/api/candidates/999/profile").status_code == 404

    @pytest.mark.parametrize("field", ["title", "summary", "location", "education"])
    def test_profile_text_fields_must_be_strings(self, client, field):
        user = create_user(client, "candidate", "n@example.com")

        response = create_profile(client, user["id"], **{field: 7700})

        assert response.status_code == 400
        assert client.get(f"/api/candidates/{user['id']}/profile").status_code == 404

    def test_bad_profile_update_does_not_break_job_posting(self, client):
        candidate = create_user(client, "candidate", "c@example.com")
        create_profile(client, candidate["id"])
        rejected = client.put(f"/api/candidates/{candidate['id']}/profile", json={"location": 7700})
        recruiter = create_recruiter(client, "r@example.com")

        response = create_job(client, recruiter["id"])

        assert rejected.status_code == 400
        assert response.status_code == 201
        assert response.get_json()["matches_created"] == 1


class TestJobsApi:
    """Job endpoints"""

    def test_create_job_matches_existing_candidates(self, marketplace):
        _, _, job_payload = marketplace
        assert job_payload["matches_created"] == 1
        assert job_payload["job"]["active"] is True

    def test_create_job_requires_recruiter(self, client):
        candidate = create_user(client, "candidate", "c@example.com")

        assert create_job(client, candidate["id"]).status_code == 403
        assert create_job(client, 999).status_code == 404
        assert create_job(client, None).status_code == 400

    def test_create_job_validation(self, client):
        recruiter = create_recruiter(client, "r@example.com")
        response = create_job(client, recruiter["id"], skills=[], job_type="gig")

        assert response.status_code == 400
        assert "At least one skill is required" in response.get_json()["errors"]

    def test_list_search_and_detail(self, client):
        recruiter = create_recruiter(client, "r@example.com")
        create_job(client, recruiter["id"], title="Payroll Clerk", skills=["excel"])
        wanted = create_job(client, recruiter["id"]).get_json()["job"]

        listing = client.get("/api/jobs?search=react").get_json()
        assert [j["id"] for j in listing["jobs"]] == [wanted["id"]]
        assert client.get("/api/jobs?limit=1").get_json()["count"] == 1
        assert client.get(f"/api/jobs/{wanted['id']}").get_json()["job"]["title"] == "React Engineer"
        assert client.get("/api/jobs/999").status_code == 404

    def test_deactivate_hides_job(self, client):
        recruiter = create_recruiter(client, "r@example.com")
        job = create_job(client, recruiter["id"]).get_json()["job"]

        response = client.post(f"/api/jobs/{job['id']}/deactivate")

        assert response.status_code == 200
        assert client.get("/api/jobs").get_json()["count"] == 0
        assert client.post("/api/jobs/999/deactivate").status_code == 404

    @pytest.mark.parametrize("recruiter_id", [True, False, 0, -1, 1.0, "abc", [1]])
    def test_create_job_rejects_malformed_recruiter_id(self, client, recruiter_id):
        create_recruiter(client, "r@example.com")

        response = create_job(client, recruiter_id)

        assert response.status_code == 400
        assert client.get("/api/jobs").get_json()["count"] == 0

    def test_create_job_accepts_numeric_string_id(self, client):
        recruiter = create_recruiter(client, "r@example.com")

        response = create_job(client, str(recruiter["id"]))

        assert response.status_code == 201
        assert response.get_json()["job"]["recruiter_id"] == recruiter["id"]

    def test_create_job_requires_company_profile(self, client):
        recruiter = create_user(client, "recruiter", "nocompany@example.com")

        response = create_job(client, recruiter["id"])

        assert response.status_code == 400
        assert response.get_json()["error"] == "You must create a company profile first"

    def test_job_links_to_company(self, client):
        recruiter = create_recruiter(client, "r@example.com")
        company = client.get(f"/api/recruiters/{recruiter['id']}/company").get_json()["company"]

        job = create_job(client, recruiter["id"]).get_json()["job"]

        assert job["company_id"] == company["id"]

    def test_matching_failure_still_returns_created_job(self, client):
        recruiter = create_recruiter(client, "r@example.com")

        with patch("routes.run_matching_for_job", side_effect=RuntimeError("db hiccup")):
            response = create_job(client, recruiter["id"])

        assert response.status_code == 201
        payload = response.get_json()
        assert payload["matches_created"] == 0
        assert client.get(f"/api/jobs/{payload['job']['id']}").status_code == 200


class TestJobUpdateApi:
    """Recruiter edits to their own jobs"""

    @pytest.fixture
    def posted(self, client):
        recruiter = create_recruiter(client, "r@example.com")
        job = create_job(client, recruiter["id"]).get_json()["job"]
        return recruiter, job

    def test_owner_can_update(self, client, posted):
        recruiter, job = posted

        response = client.put(f"/api/jobs/{job['id']}", json={
            "recruiter_id": recruiter["id"],
            "title": "Senior React Engineer",
            "skills": [" React ", "GraphQL"],
            "job_type": "contract",
            "remote_ok": False,
        })

        assert response.status_code == 200
        updated = response.get_json()["job"]
        assert updated["title"] == "Senior React Engineer"
        assert updated["skills"] == ["React", "GraphQL"]
        assert updated["job_type"] == "contract"
        assert updated["remote_ok"] is False
        assert updated["description"] == job["description"]

    def test_other_recruiter_forbidden(self, client, posted):
        _, job = posted
        other = create_recruiter(client, "other@example.com", company_name="Other Co")

        response = client.put(f"/api/jobs/{job['id']}", json={"recruiter_id": other["id"], "title": "Mine now"})

        assert response.status_code == 403
        assert client.get(f"/api/jobs/{job['id']}").get_json()["job"]["title"] == "React Engineer"

    def test_invalid_update(self, client, posted):
        recruiter, job = posted

        response = client.put(f"/api/jobs/{job['id']}", json={
            "recruiter_id": recruiter["id"], "skills": [], "location": 12,
        })

        assert response.status_code == 400
        errors = response.get_json()["errors"]
        assert "At least one skill is required" in errors
        assert "Job location must be a string" in errors

    def test_missing_job_and_recruiter_id(self, client, posted):
        recruiter, job = posted

        assert client.put("/api/jobs/999", json={"recruiter_id": recruiter["id"]}).status_code == 404
        assert client.put(f"/api/jobs/{job['id']}", json={"recruiter_id": True}).status_code == 400


class TestRecruiterApi:
    """Company profiles and recruiter job listings"""

    def test_company_profile_lifecycle(self, client):
        recruiter = create_recruiter(client, "r@example.com")
        url = f"/api/recruiters/{recruiter['id']}/company"

        duplicate = client.post(url, json={"company_name": "Again"})
        updated = client.put(url, json={"industry": "Fintech", "company_size": "11-50"})

        assert duplicate.status_code == 409
        assert updated.status_code == 200
        company = client.get(url).get_json()["company"]
        assert company["company_name"] == "Ubuntu Tech"
        assert company["industry"] == "Fintech"
        assert company["company_size"] == "11-50"

    def test_company_requires_name(self, client):
        recruiter = create_user(client, "recruiter", "r@example.com")
        url = f"/api/recruiters/{recruiter['id']}/company"

        assert client.post(url, json={"industry": "Retail"}).status_code == 400
        assert client.put(url, json={"industry": "Retail"}).status_code == 404
        assert client.get(url).status_code == 404

    def test_candidates_cannot_have_companies(self, client):
        candidate = create_user(client, "candidate", "c@example.com")

        response = client.post(f"/api/recruiters/{candidate['id']}/company", json={"company_name": "Nope"})

        assert response.status_code == 403
        assert client.post("/api/recruiters/999/company", json={"company_name": "Nope"}).status_code == 404

    def test_recruiter_jobs_include_inactive(self, client):
        recruiter = create_recruiter(client, "r@example.com")
        other = create_recruiter(client, "other@example.com", company_name="Other Co")
        closed = create_job(client, recruiter["id"], title="Closed").get_json()["job"]
        open_job = create_job(client, recruiter["id"], title="Open").get_json()["job"]
        create_job(client, other["id"], title="Not mine")
        client.post(f"/api/jobs/{closed['id']}/deactivate")

        listing = client.get(f"/api/recruiters/{recruiter['id']}/jobs").get_json()

        assert [j["id"] for j in listing["jobs"]] == [open_job["id"], closed["id"]]
        assert listing["jobs"][1]["active"] is False

    def test_recruiter_jobs_for_candidate_forbidden(self, client):
        candidate = create_user(client, "candidate", "c@example.com")

        assert client.get(f"/api/recruiters/{candidate['id']}/jobs").status_code == 403
        assert client.get("/api/recruiters/999/jobs").status_code == 404


class TestMatchingApi:
    """Matching runs and match views"""

    def test_rerun_creates_no_duplicates(self, client, marketplace):
        candidate, _, _ = marketplace

        response = client.post(f"/api/matching/candidates/{candidate['id']}")

        assert response.status_code == 200
        assert response.get_json()["results"] == []
        assert response.get_json()["matches_created"] == 0
        assert client.get(f"/api/matches/candidate/{candidate['id']}").get_json()["count"] == 1

    def test_match_job_endpoint(self, client):
        recruiter = create_recruiter(client, "r@example.com")
        job = create_job(client, recruiter["id"]).get_json()["job"]
        candidate = create_user(client, "candidate", "late@example.com")
        create_profile(client, candidate["id"])

        payload = client.post(f"/api/matching/jobs/{job['id']}").get_json()

        assert payload["matches_created"] == 1
        result = payload["results"][0]
        assert result["candidate_id"] == candidate["id"]
        assert result["overall_score"] == 68
        assert result["matched_skills"] == ["javascript", "react", "node.js"]

    def test_sweep_summary(self, client, marketplace):
        other = create_user(client, "candidate", "other@example.com")
        create_profile(client, other["id"], skills=["React", "JavaScript", "TypeScript", "Redux"])

        summary = client.post("/api/matching/run").get_json()["summary"]

        assert summary == {"processed": 2, "failed": 0, "matches_created": 1}

    def test_candidate_view_includes_job(self, client, marketplace):
        candidate, _, job_payload = marketplace

        matches = client.get(f"/api/matches/candidate/{candidate['id']}").get_json()["matches"]

        assert matches[0]["job"]["id"] == job_payload["job"]["id"]
        assert matches[0]["score"] == 68
        assert matches[0]["status"] == "pending"

    def test_recruiter_view_is_anonymous_until_unlocked(self, client, marketplace):
        candidate, recruiter, _ = marketplace
        url = f"/api/matches/recruiter/{recruiter['id']}"

        hidden = client.get(url).get_json()["matches"][0]["candidate"]
        assert hidden == {"id": candidate["id"], "first_name": "Anonymous",
                          "last_name": "Candidate", "email": None}

        match_id = client.get(url).get_json()["matches"][0]["id"]
        client.post(f"/api/matches/{match_id}/unlock", json={"user_id": recruiter["id"]})

        shown = client.get(url).get_json()["matches"][0]["candidate"]
        assert shown["first_name"] == "Sipho"
        assert shown["email"] == "candidate@example.com"


class TestUnlockApi:
    """Unlock endpoint"""

    @pytest.fixture
    def match_id(self, client, marketplace):
        candidate, _, _ = marketplace
        return client.get(f"/api/matches/candidate/{candidate['id']}").get_json()["matches"][0]["id"]

    def test_two_sided_unlock(self, client, marketplace, match_id):
        candidate, recruiter, _ = marketplace

        first = client.post(f"/api/matches/{match_id}/unlock", json={"user_id": candidate["id"]})
        assert first.status_code == 200
        assert first.get_json()["match"]["status"] == "pending"

        second = client.post(f"/api/matches/{match_id}/unlock", json={"user_id": recruiter["id"]})
        match = second.get_json()["match"]
        assert match["status"] == "unlocked"
        assert match["unlocked_by_candidate"] is True
        assert match["unlocked_by_recruiter"] is True

    def test_repeat_unlock(self, client, marketplace, match_id):
        candidate, _, _ = marketplace
        client.post(f"/api/matches/{match_id}/unlock", json={"user_id": candidate["id"]})

        again = client.post(f"/api/matches/{match_id}/unlock", json={"user_id": candidate["id"]})
        assert again.status_code == 400

    def test_outsider_forbidden(self, client, match_id):
        outsider = create_user(client, "candidate", "outsider@example.com")
        response = client.post(f"/api/matches/{match_id}/unlock", json={"user_id": outsider["id"]})
        assert response.status_code == 403

    def test_missing_user_id(self, client, match_id):
        assert client.post(f"/api/matches/{match_id}/unlock", json={}).status_code == 400

    def test_missing_match(self, client):
        assert client.post("/api/matches/999/unlock", json={"user_id": 1}).status_code == 404

    def test_numeric_string_user_id_is_accepted(self, client, marketplace, match_id):
        candidate, _, _ = marketplace

        response = client.post(f"/api/matches/{match_id}/unlock", json={"user_id": str(candidate["id"])})

        assert response.status_code == 200
        assert response.get_json()["match"]["unlocked_by_candidate"] is True

    @pytest.mark.parametrize("user_id", [True, "abc", 0, 2.5])
    def test_malformed_user_id_rejected(self, client, match_id, user_id):
        response = client.post(f"/api/matches/{match_id}/unlock", json={"user_id": user_id})
        assert response.status_code == 400


class TestMatchDetailApi:
    """Single match view with unlock-gated contact details"""

    @pytest.fixture
    def match_id(self, client, marketplace):
        candidate, _, _ = marketplace
        return client.get(f"/api/matches/candidate/{candidate['id']}").get_json()["matches"][0]["id"]

    def get_detail(self, client, match_id, user_id):
        return client.get(f"/api/matches/{match_id}?user_id={user_id}")

    def test_candidate_sees_recruiter_after_unlocking(self, client, marketplace, match_id):
        candidate, recruiter, job_payload = marketplace

        locked = self.get_detail(client, match_id, candidate["id"]).get_json()["match"]
        assert locked["job"]["id"] == job_payload["job"]["id"]
        assert "recruiter" not in locked
        assert "company" not in locked

        client.post(f"/api/matches/{match_id}/unlock", json={"user_id": candidate["id"]})
        unlocked = self.get_detail(client, match_id, candidate["id"]).get_json()["match"]

        assert unlocked["recruiter"] == {
            "id": recruiter["id"], "first_name": "Naledi",
            "last_name": "Khumalo", "email": "recruiter@example.com",
        }
        assert unlocked["company"]["company_name"] == "Ubuntu Tech"
        assert "profile" not in unlocked

    def test_recruiter_sees_candidate_after_unlocking(self, client, marketplace, match_id):
        candidate, recruiter, _ = marketplace

        locked = self.get_detail(client, match_id, recruiter["id"]).get_json()["match"]
        assert locked["candidate"]["first_name"] == "Anonymous"
        assert locked["candidate"]["email"] is None
        assert "profile" not in locked

        client.post(f"/api/matches/{match_id}/unlock", json={"user_id": recruiter["id"]})
        unlocked = self.get_detail(client, match_id, recruiter["id"]).get_json()["match"]

        assert unlocked["candidate"]["email"] == "candidate@example.com"
        assert unlocked["profile"]["title"] == "Frontend Developer"
        assert "company" not in unlocked

    def test_one_side_unlocking_reveals_nothing_to_the_other(self, client, marketplace, match_id):
        candidate, recruiter, _ = marketplace
        client.post(f"/api/matches/{match_id}/unlock", json={"user_id": candidate["id"]})

        recruiter_view = self.get_detail(client, match_id, recruiter["id"]).get_json()["match"]

        assert recruiter_view["candidate"]["first_name"] == "Anonymous"
        assert "profile" not in recruiter_view

    def test_outsider_forbidden(self, client, match_id):
        outsider = create_user(client, "candidate", "outsider@example.com")
        assert self.get_detail(client, match_id, outsider["id"]).status_code == 403

    def test_user_id_required(self, client, match_id):
        assert client.get(f"/api/matches/{match_id}").status_code == 400
        assert self.get_detail(client, match_id, "abc").status_code == 400

    def test_missing_match(self, client):
        assert self.get_detail(client, 999, 1).status_code == 404


class TestResumeApi:
    """Resume parsing endpoint"""

    def test_resume_merges_skills_and_rematches(self, client):
        recruiter = create_recruiter(client, "r@example.com")
        create_job(client, recruiter["id"], title="Python Developer",
                   skills=["Python", "Django", "PostgreSQL"])
        candidate = create_user(client, "candidate", "c@example.com")
        create_profile(client, candidate["id"], skills=["Python"], years_of_experience=None)

        response = client.post(f"/api/candidates/{candidate['id']}/resume", json={
            "resume_text": "Backend developer with 6 years experience in Django and PostgreSQL. "
                           "Bachelor of Science in Computer Science.",
        })

        payload = response.get_json()
        assert response.status_code == 200
        assert payload["profile"]["skills"] == ["Python", "postgresql"]
        assert payload["profile"]["years_of_experience"] == 6
        assert payload["profile"]["education"] == "Bachelor's Degree"
        assert payload["matches_created"] == 1

    def test_resume_requires_text(self, client):
        candidate = create_user(client, "candidate", "c@example.com")
        create_profile(client, candidate["id"])

        response = client.post(f"/api/candidates/{candidate['id']}/resume", json={"resume_text": 42})
        assert response.status_code == 400

    def test_resume_without_profile(self, client):
        response = client.post("/api/candidates/999/resume", json={"resume_text": "Python"})
        assert response.status_code == 404

    def test_parser_failure_returns_500(self, client):
        candidate = create_user(client, "candidate", "c@example.com")
        create_profile(client, candidate["id"])

        with patch("routes.parse_resume_with_ai", side_effect=RuntimeError("boom")):
            response = client.post(f"/api/candidates/{candidate['id']}/resume",
                                   json={"resume_text": "Python"})

        assert response.status_code == 500
        assert response.get_json()["success"] is False
