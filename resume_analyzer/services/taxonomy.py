"""
Tag and score derivation.

Tags are a closed set of kinds (department, skill, certification, experience)
and are only turned into "<prefix>:<value>" strings when they leave this module.
Everything here is a pure function of the candidate profile, so re-running the
derivation over stored ``parsedData`` reproduces the stored tags exactly.
"""
import re
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from resume_analyzer.models.analysis import CandidateAnalysisResult, ScoreComponents
from resume_analyzer.models.settings import TaxonomySettings
from resume_analyzer.utils.exceptions import ValidationError
from resume_analyzer.utils.logging_config import get_logger

logger = get_logger(__name__)


class TagKind(str, Enum):
    DEPARTMENT = "dept"
    SKILL = "skill"
    CERTIFICATION = "cert"
    EXPERIENCE = "exp"


@dataclass(frozen=True)
class Tag:
    kind: TagKind
    value: str

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.value}"

    @classmethod
    def parse(cls, raw: str) -> "Tag":
        prefix, sep, value = raw.partition(":")
        if not sep or not value.strip():
            raise ValidationError(f"Malformed tag: {raw!r}", field="tags", value=raw)
        try:
            kind = TagKind(prefix.strip().lower())
        except ValueError:
            raise ValidationError(f"Unknown tag kind: {prefix!r}", field="tags", value=raw)
        return cls(kind, value.strip())


EXPERIENCE_BUCKETS = [
    (0, "No Experience"),
    (1, "Less than 1 year"),
    (3, "1-3 years"),
    (5, "3-5 years"),
    (10, "5-10 years"),
]
TOP_BUCKET = "10+ years"

_YEARS_RE = re.compile(
    r"(\d+(?:[.,]\d+)?)(?:\s*(?:-|to)\s*\d+(?:[.,]\d+)?)?\s*\+?\s*(years?|yrs?|months?|mos?)\b", re.IGNORECASE
)


def years_bucket(years: float) -> str:
    if years <= 0:
        return EXPERIENCE_BUCKETS[0][1]
    for upper, label in EXPERIENCE_BUCKETS[1:]:
        if years < upper:
            return label
    return TOP_BUCKET


def parse_years(duration: str) -> Optional[float]:
    """'3 years', '18 months', '2-5 yrs' -> years. The first quantity wins."""
    if not duration:
        return None
    if re.search(r"\b(no|none|without)\s+experience\b", duration, re.IGNORECASE):
        return 0.0
    match = _YEARS_RE.search(duration)
    if not match:
        return None
    amount = float(match.group(1).replace(",", "."))
    if match.group(2).lower().startswith("m"):
        amount = amount / 12
    return amount


def experience_years(profile: CandidateAnalysisResult) -> Optional[float]:
    if profile.experience.years is not None:
        return max(0.0, profile.experience.years)
    return parse_years(profile.experience.duration)


def _unique(tags: Iterable[Tag]) -> List[Tag]:
    seen = set()
    out = []
    for tag in tags:
        value = tag.value.strip()
        if not value:
            continue
        key = (tag.kind, value.lower())
        if key in seen:
            continue
        seen.add(key)
        out.append(Tag(tag.kind, value))
    return out


def derive_tag_set(profile: CandidateAnalysisResult, settings: TaxonomySettings = None) -> List[Tag]:
    settings = settings or TaxonomySettings()
    tags: List[Tag] = []

    departments = [ds.department for ds in profile.department_scores if ds.score > settings.department_threshold]
    # the primary department leads, but only when its own score qualifies
    primary = profile.primary_department.strip().lower()
    departments.sort(key=lambda d: d.strip().lower() != primary)
    for department in departments:
        tags.append(Tag(TagKind.DEPARTMENT, department))

    for skill in profile.role_skills.all_skills():
        if skill.level >= settings.skill_min_level:
            tags.append(Tag(TagKind.SKILL, skill.name))

    for cert in profile.certifications:
        tags.append(Tag(TagKind.CERTIFICATION, cert.name))

    tags.append(Tag(TagKind.EXPERIENCE, profile.experience_level.value))
    years = experience_years(profile)
    if years is not None:
        tags.append(Tag(TagKind.EXPERIENCE, years_bucket(years)))

    return _unique(tags)


def derive_tags(profile: CandidateAnalysisResult, settings: TaxonomySettings = None) -> List[str]:
    return [str(t) for t in derive_tag_set(profile, settings)]


def derive_scores(profile: CandidateAnalysisResult) -> ScoreComponents:
    return profile.score_components.model_copy()


def coerce_profile(data: Any) -> CandidateAnalysisResult:
    """Build a profile from loosely-shaped data, replacing invalid top-level fields with defaults"""
    if isinstance(data, CandidateAnalysisResult):
        return data
    if not isinstance(data, dict):
        logger.warning(str(ValidationError("Profile data is not an object", field="parsedData", value=type(data).__name__)))
        return CandidateAnalysisResult()

    # errors are reported by alias; map back so snake_case input is dropped too
    names = {}
    for name, info in CandidateAnalysisResult.model_fields.items():
        names[info.alias or name] = name

    cleaned = dict(data)
    for _ in range(len(cleaned) + 1):
        try:
            return CandidateAnalysisResult.model_validate(cleaned)
        except PydanticValidationError as e:
            bad = {str(err["loc"][0]) for err in e.errors() if err.get("loc")}
            for key in bad:
                logger.warning(str(ValidationError(
                    f"Invalid profile field replaced by default: {key}",
                    field=key,
                    value=cleaned.get(key, cleaned.get(names.get(key, key)))
                )))
                cleaned.pop(key, None)
                cleaned.pop(names.get(key, key), None)
            if not bad:
                break
    return CandidateAnalysisResult()


def build_analysis(profile: CandidateAnalysisResult) -> Dict[str, Any]:
    """Flattened view of the profile that the search index covers"""
    scores = derive_scores(profile).model_dump(by_alias=True)
    scores["overall"] = profile.overall_score
    return {
        "experienceLevel": profile.experience_level.value,
        "primaryDepartment": profile.primary_department,
        "languages": [{"name": l.language, "level": l.level} for l in profile.languages],
        "education": {"level": profile.education.level, "fields": list(profile.education.study_fields)},
        "experience": profile.experience.model_dump(by_alias=True),
        "technicalSkills": [s.name for s in profile.role_skills.operational + profile.role_skills.administrative],
        "softSkills": [s.name for s in profile.role_skills.customer_facing],
        "certifications": [c.name for c in profile.certifications],
        "scores": scores,
    }


EMAIL_RE = re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+")
PHONE_RE = re.compile(r"\+?\d[\d ().-]{7,}\d")
BIRTHDATE_RE = re.compile(
    r"(?:date of birth|birth\s?date|d\.?o\.?b\.?|born)\s*[:\-]?\s*"
    r"(\d{1,2}[./-]\d{1,2}[./-]\d{2,4}|\d{4}-\d{2}-\d{2})",
    re.IGNORECASE,
)
SALARY_RE = re.compile(r"(\d{1,3}(?:[,.\s]\d{3})+|\d+(?:\.\d+)?)\s*(k\b)?", re.IGNORECASE)


def parse_salary(text: str) -> Optional[float]:
    """'EUR 2,500 per month' -> 2500.0, '30k' -> 30000.0"""
    if not text:
        return None
    match = SALARY_RE.search(text)
    if not match:
        return None
    number = match.group(1)
    if re.fullmatch(r"\d{1,3}(?:[,.\s]\d{3})+", number):
        number = re.sub(r"[,.\s]", "", number)
    amount = float(number)
    if match.group(2):
        amount *= 1000
    return amount


BIRTHDATE_FORMATS = (
    "%Y-%m-%d",
    # month first, as US resumes write it, then day first
    "%m/%d/%Y", "%d/%m/%Y",
    "%m-%d-%Y", "%d-%m-%Y",
    "%m.%d.%Y", "%d.%m.%Y",
    "%B %d, %Y", "%b %d, %Y", "%B %d %Y", "%b %d %Y",
    "%d %B %Y", "%d %b %Y",
)


def parse_birthdate(text: str) -> Optional[date]:
    if not text:
        return None
    text = text.strip()
    for fmt in BIRTHDATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def age_from_birthdate(birthdate: str, today: date = None) -> Optional[int]:
    """Completed years since ``birthdate``; None when it cannot be parsed or is implausible"""
    born = parse_birthdate(birthdate)
    if born is None:
        return None
    today = today or date.today()
    age = today.year - born.year - ((today.month, today.day) < (born.month, born.day))
    return age if 0 < age < 120 else None


def _first(pattern: re.Pattern, text: str, group: int = 0) -> Optional[str]:
    if not text:
        return None
    match = pattern.search(text)
    return match.group(group).strip() if match else None


def demographic_fields(profile: CandidateAnalysisResult, text: str = None) -> Dict[str, Any]:
    """Top-level searchable demographics. Missing values are looked up in the resume text."""
    demo = profile.demographics
    first_name, last_name = demo.first_name.strip(), demo.last_name.strip()
    if not first_name and profile.candidate_name.strip():
        parts = profile.candidate_name.split()
        first_name = parts[0]
        last_name = last_name or " ".join(parts[1:])

    expected_salary = profile.expected_salary
    if expected_salary is None:
        expected_salary = parse_salary(profile.personal_attributes.salary_expectation)

    birthdate = demo.birthdate.strip() or _first(BIRTHDATE_RE, text, 1)
    age = profile.age if profile.age is not None else age_from_birthdate(birthdate)

    return {
        "firstName": first_name or None,
        "lastName": last_name or None,
        "email": demo.email.strip() or _first(EMAIL_RE, text),
        "phone": demo.phone.strip() or _first(PHONE_RE, text),
        "birthdate": birthdate,
        "gender": demo.gender.strip() or None,
        "age": age,
        "department": (profile.department or profile.primary_department).strip() or None,
        "expectedSalary": expected_salary,
    }
