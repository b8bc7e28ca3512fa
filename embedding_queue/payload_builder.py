"""Build embedding function payloads from candidate and job records."""

import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from .config import CANDIDATE_TABLE, JOB_POSTING_TABLE
from .errors import EntityNotFound, UnknownEntityType
from .models import EntityType

logger = logging.getLogger(__name__)

_LEADING_DIGITS = re.compile(r"\s*(\d+)")


def parse_year(value: Any) -> Optional[int]:
    """Parse a year stored as int or string.

    Only the leading digits count, so '2019-05' and '2019 (approx)' both
    give 2019. Returns None if unusable.
    """
    if value is None or isinstance(value, bool):
        return None
    match = _LEADING_DIGITS.match(str(value))
    if not match:
        return None
    year = int(match.group(1))
    return year if year > 0 else None


def calculate_years_of_experience(work_experience: Optional[List[Dict[str, Any]]],
                                  current_year: int) -> int:
    """Sum the span of each work entry.

    Entries that are ongoing count up to ``current_year``. Entries without
    a parseable start year, or with neither an end year nor is_present,
    are skipped.
    """
    total = 0
    for exp in work_experience or []:
        start_year = parse_year(exp.get("start_year"))
        if start_year is None:
            continue
        end_year = current_year if exp.get("is_present") else parse_year(exp.get("end_year"))
        if end_year is None:
            continue
        total += end_year - start_year
    return total


def select_current_position(work_experience: Optional[List[Dict[str, Any]]],
                            candidate_id: str = "") -> Optional[Dict[str, Any]]:
    """Pick the work entry marked is_present.

    When several are marked, the most recently started one wins.
    """
    current = [exp for exp in work_experience or [] if exp.get("is_present")]
    if not current:
        return None
    if len(current) > 1:
        logger.warning(
            f"Candidate {candidate_id} has {len(current)} current positions; "
            f"using the most recently started"
        )
    return max(current, key=lambda exp: parse_year(exp.get("start_year")) or 0)


def format_duration(exp: Dict[str, Any]) -> str:
    """Render a work entry's span as '2019-2022' or '2019-Present'."""
    start = exp.get("start_year") or ""
    end = "Present" if exp.get("is_present") else (exp.get("end_year") or "")
    return f"{start}-{end}"


def build_candidate_payload(profile: Dict[str, Any], current_year: int) -> Dict[str, Any]:
    """Project a candidate_profiles row into the generate-embeddings request."""
    work_experience = profile.get("work_experience") or []
    education = profile.get("education") or []
    current_job = select_current_position(work_experience, str(profile.get("id", ""))) or {}

    return {
        "candidate_id": profile["id"],
        "candidate_data": {
            "name": profile.get("name"),
            "headline": current_job.get("title"),
            "current_position": current_job.get("title"),
            "current_company": current_job.get("company"),
            "location": profile.get("location"),
            "country": profile.get("country"),
            "skills": profile.get("interests") or [],
            "years_of_experience": calculate_years_of_experience(work_experience, current_year),
            "certifications": [],
            "languages": [],
            "bio": profile.get("bio"),
            "work_experience": [
                {
                    "title": exp.get("title"),
                    "company": exp.get("company"),
                    "description": exp.get("description"),
                    "duration": format_duration(exp),
                }
                for exp in work_experience
            ],
            "education": [
                {
                    "school": edu.get("institution"),
                    "field": edu.get("field_of_study"),
                    "degree": edu.get("degree"),
                }
                for edu in education
            ],
        },
    }


def build_job_payload(job: Dict[str, Any]) -> Dict[str, Any]:
    """Project a job_postings row into the generate-job-embeddings request."""
    return {
        "job_posting_id": job["id"],
        "job_data": {
            "job_title": job.get("job_title"),
            "categories": job.get("categories") or [],
            "job_location": job.get("job_location"),
            "requirements": job.get("requirements"),
            "description_url": job.get("description_url"),
        },
    }


class PayloadBuilder:
    """Fetch source records and build embedding requests."""

    def __init__(self, client, current_year: Optional[int] = None):
        """Initialize the builder.

        Args:
            client: Supabase client used to read the source tables
            current_year: Pin the year used for ongoing positions (defaults to now)
        """
        self.client = client
        self.current_year = current_year

    def build(self, entity_type: EntityType, entity_id: str) -> Dict[str, Any]:
        """Build the request body for one queue item.

        Raises:
            EntityNotFound: If the source record does not exist
            UnknownEntityType: If no builder handles the entity type
        """
        if entity_type is EntityType.CANDIDATE:
            profile = self._fetch_one(CANDIDATE_TABLE, entity_type, entity_id)
            year = self.current_year or datetime.now().year
            return build_candidate_payload(profile, year)

        if entity_type is EntityType.JOB_POSTING:
            job = self._fetch_one(JOB_POSTING_TABLE, entity_type, entity_id)
            return build_job_payload(job)

        raise UnknownEntityType(f"Unknown entity type: {entity_type}")

    def _fetch_one(self, table: str, entity_type: EntityType, entity_id: str) -> Dict[str, Any]:
        response = self.client.table(table).select("*").eq("id", entity_id).limit(1).execute()
        rows = response.data or []
        if not rows:
            raise EntityNotFound(entity_type.value, entity_id)
        return rows[0]
