"""
Structured candidate profile produced by the parser and consumed by the tag deriver
"""
import math
import re
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class ExperienceLevel(str, Enum):
    ENTRY = "Entry Level"
    MID = "Mid-Level"
    SENIOR = "Senior"
    MANAGEMENT = "Management"

    @classmethod
    def coerce(cls, value) -> "ExperienceLevel":
        """Accept the model's verbose spellings, e.g. 'Mid-Level (2-5 years)'"""
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        for level in cls:
            if text.startswith(level.value.lower()):
                return level
        if text.startswith("entry") or text.startswith("junior"):
            return cls.ENTRY
        if text.startswith("mid"):
            return cls.MID
        if text.startswith("senior") or text.startswith("lead"):
            return cls.SENIOR
        if text.startswith("manag") or text.startswith("director") or text.startswith("executive"):
            return cls.MANAGEMENT
        raise ValueError(f"unknown experience level: {value!r}")


class DepartmentCategory(str, Enum):
    GUEST_SERVICES = "Guest Services"
    ACCOMMODATION_SERVICES = "Accommodation Services"
    FOOD_AND_BEVERAGE = "Food & Beverage"
    BUSINESS_OPERATIONS = "Business Operations"
    FACILITIES_MANAGEMENT = "Facilities Management"


def _finite(value) -> Optional[float]:
    """float(value), or None for lists, dicts, junk strings, inf and nan"""
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def _clamp(value, low: int, high: int) -> int:
    number = None if value is None or value == "" else _finite(value)
    if number is None:
        return low
    return max(low, min(high, int(round(number))))


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Skill(CamelModel):
    name: str
    level: int = 1

    @field_validator("level", mode="before")
    @classmethod
    def clamp_level(cls, v):
        return _clamp(v, 1, 5)


class RoleSkills(CamelModel):
    customer_facing: List[Skill] = Field(default_factory=list)
    operational: List[Skill] = Field(default_factory=list)
    administrative: List[Skill] = Field(default_factory=list)

    def all_skills(self) -> List[Skill]:
        return [*self.customer_facing, *self.operational, *self.administrative]


class Language(CamelModel):
    language: str
    level: int = 1

    @field_validator("level", mode="before")
    @classmethod
    def clamp_level(cls, v):
        return _clamp(v, 1, 5)


class Certification(CamelModel):
    name: str
    issuer: str = ""
    expiry_date: Optional[str] = None


class PersonalAttributes(CamelModel):
    availability: str = ""
    accommodation_needs: str = ""
    salary_expectation: str = ""
    notice_period: str = ""


class DepartmentScore(CamelModel):
    category: Optional[DepartmentCategory] = None
    department: str
    score: int = 0

    @field_validator("score", mode="before")
    @classmethod
    def clamp_score(cls, v):
        return _clamp(v, 0, 100)

    @field_validator("category", mode="before")
    @classmethod
    def known_category(cls, v):
        # unknown categories are dropped rather than failing the whole entry
        values = {c.value.lower(): c for c in DepartmentCategory}
        return values.get(str(v or "").strip().lower())


class PositionMatch(CamelModel):
    title: str
    department: str = ""
    match_score: int = 0

    @field_validator("match_score", mode="before")
    @classmethod
    def clamp_score(cls, v):
        return _clamp(v, 0, 100)


class ScoreComponents(CamelModel):
    department_match: int = 0
    technical_qualification: int = 0
    experience_value: int = 0
    language_proficiency: int = 0
    practical_factors: int = 0

    @field_validator("*", mode="before")
    @classmethod
    def clamp_score(cls, v):
        return _clamp(v, 0, 100)


class Education(CamelModel):
    level: str = ""
    study_fields: List[str] = Field(default_factory=list, alias="fields")

    @field_validator("study_fields", mode="before")
    @classmethod
    def listify(cls, v):
        if v is None or v == "":
            return []
        return v if isinstance(v, list) else [v]


class Experience(CamelModel):
    years: Optional[float] = None
    duration: str = ""
    establishments: List[str] = Field(default_factory=list)
    position: str = ""

    @field_validator("establishments", mode="before")
    @classmethod
    def listify(cls, v):
        if v is None or v == "":
            return []
        return v if isinstance(v, list) else [v]

    @field_validator("years", mode="before")
    @classmethod
    def numeric_years(cls, v):
        if v is None or isinstance(v, bool):
            return None
        if isinstance(v, (int, float)):
            return _finite(v)
        if not isinstance(v, str):
            return None
        # "4+", "about 6"
        match = re.search(r"\d+(?:\.\d+)?", v)
        return float(match.group(0)) if match else None


class Demographics(CamelModel):
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    birthdate: str = ""
    gender: str = ""


class CandidateAnalysisResult(CamelModel):
    """Parser output. Every field has a default so partially-populated profiles still derive tags."""
    candidate_name: str = ""
    age: Optional[int] = None
    experience_level: ExperienceLevel = ExperienceLevel.ENTRY
    primary_department: str = ""
    overall_score: int = 0
    score_components: ScoreComponents = Field(default_factory=ScoreComponents)
    department_scores: List[DepartmentScore] = Field(default_factory=list)
    role_skills: RoleSkills = Field(default_factory=RoleSkills)
    languages: List[Language] = Field(default_factory=list)
    certifications: List[Certification] = Field(default_factory=list)
    personal_attributes: PersonalAttributes = Field(default_factory=PersonalAttributes)
    recommended_positions: List[PositionMatch] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    education: Education = Field(default_factory=Education)
    experience: Experience = Field(default_factory=Experience)
    demographics: Demographics = Field(default_factory=Demographics)
    department: str = ""
    expected_salary: Optional[float] = None

    @field_validator("experience_level", mode="before")
    @classmethod
    def coerce_level(cls, v):
        return ExperienceLevel.coerce(v)

    @field_validator("overall_score", mode="before")
    @classmethod
    def clamp_score(cls, v):
        return _clamp(v, 0, 100)

    @field_validator("age", mode="before")
    @classmethod
    def numeric_age(cls, v):
        if v is None or v == "":
            return None
        # ranges such as "23-28" carry no single age
        number = _finite(v)
        if number is None:
            return None
        age = int(number)
        return age if 0 < age < 120 else None

    @field_validator("expected_salary", mode="before")
    @classmethod
    def numeric_salary(cls, v):
        # free-text salaries live in personalAttributes.salaryExpectation
        if v is None or v == "" or isinstance(v, bool):
            return None
        return _finite(v)
