import logging
from datetime import date

import pytest

from conftest import SAMPLE_TAGS
from resume_analyzer.models.analysis import CandidateAnalysisResult, ExperienceLevel
from resume_analyzer.models.settings import TaxonomySettings
from resume_analyzer.services.taxonomy import (
    Tag,
    TagKind,
    age_from_birthdate,
    build_analysis,
    coerce_profile,
    demographic_fields,
    derive_scores,
    derive_tag_set,
    derive_tags,
    parse_salary,
    parse_years,
    years_bucket,
)
from resume_analyzer.utils.exceptions import ValidationError


class TestTags:
    """Tag variant and its string form"""

    def test_str_uses_prefix(self):
        assert str(Tag(TagKind.DEPARTMENT, "Housekeeping")) == "dept:Housekeeping"

    def test_parse_splits_on_first_colon(self):
        tag = Tag.parse("cert:ISO 9001:2015")
        assert tag.kind == TagKind.CERTIFICATION
        assert tag.value == "ISO 9001:2015"

    @pytest.mark.parametrize("raw", ["Housekeeping", "color:blue", "skill:"])
    def test_parse_rejects_malformed(self, raw):
        with pytest.raises(ValidationError):
            Tag.parse(raw)


class TestDeriveTags:
    """Tag derivation from a candidate profile"""

    def test_sample_profile(self, sample_profile_data):
        profile = coerce_profile(sample_profile_data)
        assert derive_tags(profile) == SAMPLE_TAGS

    def test_department_threshold_is_exclusive(self, sample_profile_data):
        tags = derive_tags(coerce_profile(sample_profile_data))
        assert "dept:Laundry" in tags  # 61
        assert "dept:Kitchen" not in tags  # 60

    def test_primary_department_needs_a_qualifying_score(self, sample_profile_data):
        sample_profile_data["primaryDepartment"] = "Kitchen"  # scored 60
        tags = derive_tags(coerce_profile(sample_profile_data))
        assert "dept:Kitchen" not in tags

        sample_profile_data["departmentScores"] = []
        sample_profile_data["primaryDepartment"] = "Front Office"
        tags = derive_tags(coerce_profile(sample_profile_data))
        assert not [t for t in tags if t.startswith("dept:")]

    def test_primary_department_leads(self, sample_profile_data):
        sample_profile_data["primaryDepartment"] = "laundry"
        tags = derive_tags(coerce_profile(sample_profile_data))
        assert tags[:2] == ["dept:Laundry", "dept:Housekeeping"]

    def test_skill_level_threshold_is_inclusive(self, sample_profile_data):
        tags = derive_tags(coerce_profile(sample_profile_data))
        assert "skill:Safety Compliance" in tags  # level 3
        assert "skill:System Knowledge" not in tags  # level 2
        assert "skill:Reporting" not in tags  # level 1

    def test_custom_thresholds(self, sample_profile_data):
        settings = TaxonomySettings(department_threshold=50, skill_min_level=1)
        tags = derive_tags(coerce_profile(sample_profile_data), settings)
        assert "dept:Kitchen" in tags
        assert "skill:Reporting" in tags

    def test_duplicates_keep_first_occurrence(self, sample_profile_data):
        sample_profile_data["roleSkills"]["administrative"] = [{"name": "guest communication", "level": 5}]
        sample_profile_data["certifications"].append({"name": "First Aid", "issuer": "St John"})
        tags = derive_tags(coerce_profile(sample_profile_data))
        assert tags.count("skill:Guest Communication") == 1
        assert "skill:guest communication" not in tags
        assert tags.count("cert:First Aid") == 1

    def test_deterministic_and_reproducible_from_parsed_data(self, sample_profile_data):
        profile = coerce_profile(sample_profile_data)
        stored = profile.model_dump(by_alias=True, mode="json")
        assert derive_tags(profile) == derive_tags(profile)
        assert derive_tags(coerce_profile(stored)) == derive_tags(profile)

    def test_tag_kinds(self, sample_profile_data):
        kinds = {t.kind for t in derive_tag_set(coerce_profile(sample_profile_data))}
        assert kinds == set(TagKind)

    def test_years_from_duration_when_missing(self, sample_profile_data):
        sample_profile_data["experience"] = {"duration": "18 months"}
        tags = derive_tags(coerce_profile(sample_profile_data))
        assert "exp:1-3 years" in tags

    def test_no_bucket_when_years_unknown(self, sample_profile_data):
        sample_profile_data["experience"] = {"duration": "several seasons"}
        tags = derive_tags(coerce_profile(sample_profile_data))
        assert [t for t in tags if t.startswith("exp:")] == ["exp:Mid-Level"]


class TestExperience:
    """Experience bucketing"""

    @pytest.mark.parametrize("years,bucket", [
        (0, "No Experience"),
        (0.5, "Less than 1 year"),
        (1, "1-3 years"),
        (2.9, "1-3 years"),
        (3, "3-5 years"),
        (5, "5-10 years"),
        (10, "10+ years"),
        (25, "10+ years"),
    ])
    def test_years_bucket(self, years, bucket):
        assert years_bucket(years) == bucket

    @pytest.mark.parametrize("duration,years", [
        ("4 years", 4.0),
        ("18 months", 1.5),
        ("2-5 yrs", 2.0),
        ("1.5 years", 1.5),
        ("No experience", 0.0),
        ("", None),
        ("a while", None),
    ])
    def test_parse_years(self, duration, years):
        assert parse_years(duration) == years

    def test_level_coercion(self):
        assert ExperienceLevel.coerce("Senior (5+ years)") == ExperienceLevel.SENIOR
        assert ExperienceLevel.coerce("junior") == ExperienceLevel.ENTRY
        with pytest.raises(ValueError):
            ExperienceLevel.coerce("astronaut")


class TestCoerceProfile:
    """Lenient construction of stored or malformed profile data"""

    def test_invalid_field_replaced_by_default(self, sample_profile_data, caplog):
        sample_profile_data["languages"] = "fluent in everything"
        with caplog.at_level(logging.WARNING):
            profile = coerce_profile(sample_profile_data)
        assert profile.languages == []
        assert profile.candidate_name == "Maria Lopez"
        assert "languages" in caplog.text

    def test_unknown_experience_level_defaults(self, sample_profile_data):
        sample_profile_data["experienceLevel"] = "astronaut"
        assert coerce_profile(sample_profile_data).experience_level == ExperienceLevel.ENTRY

    def test_values_are_clamped(self, sample_profile_data):
        sample_profile_data["scoreComponents"]["departmentMatch"] = 140
        sample_profile_data["roleSkills"]["operational"] = [{"name": "Team Coordination", "level": 9}]
        profile = coerce_profile(sample_profile_data)
        assert profile.score_components.department_match == 100
        assert profile.role_skills.operational[0].level == 5

    @pytest.mark.parametrize("age,expected", [("29", 29), ("23-28", None), (None, None), ("", None)])
    def test_age(self, sample_profile_data, age, expected):
        sample_profile_data["age"] = age
        assert coerce_profile(sample_profile_data).age == expected

    @pytest.mark.parametrize("field,value", [
        ("overallScore", float("inf")),
        ("overallScore", [78]),
        ("age", float("inf")),
        ("age", {"years": 29}),
        ("expectedSalary", float("nan")),
    ])
    def test_odd_scalars_fall_back_to_defaults(self, sample_profile_data, field, value):
        sample_profile_data[field] = value
        profile = coerce_profile(sample_profile_data)
        assert profile.candidate_name == "Maria Lopez"
        assert profile.overall_score == (0 if field == "overallScore" else 78)
        if field == "age":
            assert profile.age is None

    def test_odd_nested_values_fall_back_to_defaults(self, sample_profile_data):
        sample_profile_data["scoreComponents"]["departmentMatch"] = [80]
        sample_profile_data["roleSkills"]["operational"][0]["level"] = {"v": 3}
        sample_profile_data["departmentScores"][1]["score"] = float("-inf")
        sample_profile_data["experience"]["years"] = float("inf")

        profile = coerce_profile(sample_profile_data)

        assert profile.score_components.department_match == 0
        assert profile.score_components.technical_qualification == 70
        assert profile.role_skills.operational[0].level == 1
        assert profile.department_scores[1].score == 0
        assert profile.experience.years is None
        # derivation still works on what is left
        assert "dept:Housekeeping" in derive_tags(profile)

    def test_non_dict_gives_empty_profile(self):
        assert coerce_profile(["not", "a", "profile"]) == CandidateAnalysisResult()

    def test_scores_carried_through(self, sample_profile_data):
        scores = derive_scores(coerce_profile(sample_profile_data))
        assert scores.model_dump(by_alias=True) == sample_profile_data["scoreComponents"]


class TestAnalysisFields:
    """Derived analysis and demographic fields"""

    def test_build_analysis(self, sample_profile_data):
        analysis = build_analysis(coerce_profile(sample_profile_data))
        assert analysis["technicalSkills"] == ["Safety Compliance", "System Knowledge", "Reporting"]
        assert analysis["softSkills"] == ["Guest Communication"]
        assert analysis["languages"] == [{"name": "English", "level": 4}, {"name": "Spanish", "level": 5}]
        assert analysis["education"] == {"level": "High School", "fields": ["Hospitality"]}
        assert analysis["certifications"] == ["First Aid"]
        assert analysis["scores"]["overall"] == 78
        assert analysis["scores"]["departmentMatch"] == 80

    def test_demographics_from_profile(self, sample_profile_data):
        fields = demographic_fields(coerce_profile(sample_profile_data))
        assert fields["firstName"] == "Maria"
        assert fields["lastName"] == "Lopez"
        assert fields["email"] == "maria.lopez@example.com"
        assert fields["gender"] == "Female"
        assert fields["age"] == 29
        assert fields["department"] == "Housekeeping"
        assert fields["expectedSalary"] == 1800.0

    def test_demographics_scanned_from_text(self, sample_profile_data):
        sample_profile_data["demographics"] = {}
        text = "Maria Lopez\nEmail: maria@hotel.es\nPhone: +34 611 222 333\nDate of birth: 12/03/1995"
        fields = demographic_fields(coerce_profile(sample_profile_data), text)
        assert fields["email"] == "maria@hotel.es"
        assert fields["phone"] == "+34 611 222 333"
        assert fields["birthdate"] == "12/03/1995"
        assert fields["gender"] is None

    def test_age_from_birthdate_when_missing(self, sample_profile_data):
        sample_profile_data["age"] = None
        sample_profile_data["demographics"]["birthdate"] = f"{date.today().year - 30}-01-01"
        assert demographic_fields(coerce_profile(sample_profile_data))["age"] == 30

    def test_extracted_age_wins_over_birthdate(self, sample_profile_data):
        sample_profile_data["demographics"]["birthdate"] = "1950-01-01"
        assert demographic_fields(coerce_profile(sample_profile_data))["age"] == 29

    @pytest.mark.parametrize("birthdate,age", [
        ("1990-06-15", 29),
        ("1990-06-14", 30),
        ("06/15/1990", 29),
        ("25/12/1989", 30),
        ("15.06.1990", 29),
        ("June 15, 1990", 29),
        ("Jun 15 1990", 29),
        ("15 June 1990", 29),
        ("sometime in the nineties", None),
        ("2030-01-01", None),
        ("", None),
    ])
    def test_age_from_birthdate(self, birthdate, age):
        assert age_from_birthdate(birthdate, today=date(2020, 6, 14)) == age

    @pytest.mark.parametrize("text,amount", [
        ("EUR 1,800 per month", 1800.0),
        ("30k", 30000.0),
        ("around 2500.50", 2500.5),
        ("negotiable", None),
        ("", None),
    ])
    def test_parse_salary(self, text, amount):
        assert parse_salary(text) == amount
