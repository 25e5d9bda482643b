from datetime import date

import pytest

from conftest import SAMPLE_PROFILE
from resume_analyzer.models.search import NumericRange, SearchQuery
from resume_analyzer.models.settings import SearchSettings
from resume_analyzer.services.search import (
    SearchEngine,
    build_filter,
    build_sort,
    format_record,
    text_score,
)
from resume_analyzer.services.taxonomy import coerce_profile, demographic_fields
from resume_analyzer.utils.exceptions import ValidationError


def person(first, last, **fields):
    doc = {
        "firstName": first,
        "lastName": last,
        "status": "completed",
        "analyzed": True,
        "tags": [],
        "analysis": {"technicalSkills": [], "softSkills": []},
    }
    doc.update(fields)
    return doc


@pytest.fixture
def engine(records):
    return SearchEngine(records, SearchSettings())


class TestBuildFilter:
    """Query to filter translation"""

    def test_empty_query_matches_everything(self):
        assert build_filter(SearchQuery()) == {}
        assert build_sort(SearchQuery()) == [("uploadDate", -1)]

    def test_text_and_tags(self):
        query = SearchQuery(search_term="  housekeeping ", tags=["dept:Housekeeping", "exp:Senior"])
        assert build_filter(query) == {"$and": [
            {"$text": {"$search": "housekeeping"}},
            {"tags": {"$all": ["dept:Housekeeping", "exp:Senior"]}},
        ]}
        assert build_sort(query)[0] == ("score", {"$meta": "textScore"})

    def test_blank_term_is_ignored(self):
        assert SearchQuery(search_term="   ").search_term is None

    def test_partial_match_is_escaped(self):
        query = SearchQuery.model_validate({"demographic": {"phone": "+34 (600)"}})
        assert build_filter(query) == {"phone": {"$regex": r"\+34\ \(600\)", "$options": "i"}}

    def test_ranges(self):
        query = SearchQuery.model_validate({"demographic": {"age": [25, 35], "expectedSalary": {"min": 1500}}})
        assert build_filter(query) == {"$and": [
            {"age": {"$gte": 25, "$lte": 35}},
            {"expectedSalary": {"$gte": 1500}},
        ]}

    def test_tags_are_normalized(self):
        query = SearchQuery(tags=["DEPT: Housekeeping", " ", "skill:Reporting"])
        assert query.tags == ["dept:Housekeeping", "skill:Reporting"]

    @pytest.mark.parametrize("tag", ["Housekeeping", "color:blue", "dept:"])
    def test_malformed_tag_rejected(self, tag):
        with pytest.raises(ValidationError) as exc_info:
            SearchQuery(tags=[tag])
        assert exc_info.value.details["field"] == "tags"

    def test_inverted_range_rejected(self):
        with pytest.raises(ValueError):
            NumericRange(min=40, max=30)


class TestSearchEngine:
    """Search against the in-memory store"""

    @pytest.mark.asyncio
    async def test_tags_are_anded(self, engine, seed):
        await seed([
            person("Ana", "One", tags=["dept:Housekeeping", "skill:Reporting"]),
            person("Ben", "Two", tags=["dept:Housekeeping"]),
            person("Cai", "Three", tags=["skill:Reporting"]),
        ])

        page = await engine.search(SearchQuery(tags=["dept:Housekeeping", "skill:Reporting"]))

        assert [r["firstName"] for r in page.records] == ["Ana"]
        assert page.total == 1

    @pytest.mark.asyncio
    async def test_pagination(self, engine, seed):
        await seed([person(f"P{i}", "Candidate") for i in range(45)])

        third = await engine.search(SearchQuery(page=3))
        assert len(third.records) == 5
        assert third.total == 45
        assert third.pages == 3
        assert third.limit == 20

        first = await engine.search(SearchQuery(page=1))
        assert len(first.records) == 20
        # newest first
        assert first.records[0]["firstName"] == "P44"

        beyond = await engine.search(SearchQuery(page=4))
        assert beyond.records == []
        assert beyond.total == 45

    @pytest.mark.asyncio
    async def test_page_size_is_capped(self, engine, seed):
        await seed([person(f"P{i}", "Candidate") for i in range(3)])
        page = await engine.search(SearchQuery(limit=500))
        assert page.limit == 100

    @pytest.mark.asyncio
    async def test_empty_result_is_valid(self, engine):
        page = await engine.search(SearchQuery(search_term="nobody"))
        assert page.records == []
        assert page.total == 0
        assert page.pages == 0

    @pytest.mark.asyncio
    async def test_age_range_is_inclusive(self, engine, seed):
        await seed([
            person("Young", "A", age=24),
            person("Low", "B", age=25),
            person("Mid", "C", age=30),
            person("High", "D", age=35),
            person("Old", "E", age=36),
            person("Unknown", "F"),
        ])

        query = SearchQuery.model_validate({"demographic": {"age": {"min": 25, "max": 35}}})
        page = await engine.search(query)

        assert sorted(r["firstName"] for r in page.records) == ["High", "Low", "Mid"]

    @pytest.mark.asyncio
    async def test_age_derived_from_birthdate_is_searchable(self, engine, seed):
        data = dict(SAMPLE_PROFILE, age=None)
        data["demographics"] = dict(data["demographics"], birthdate=f"{date.today().year - 30}-01-01")
        fields = demographic_fields(coerce_profile(data))
        await seed([person("Maria", "Lopez", **{k: v for k, v in fields.items() if k not in ("firstName", "lastName")})])

        query = SearchQuery.model_validate({"demographic": {"age": [25, 35]}})
        page = await engine.search(query)

        assert [r["firstName"] for r in page.records] == ["Maria"]
        assert page.records[0]["age"] == 30

    @pytest.mark.asyncio
    async def test_open_ended_salary_range(self, engine, seed):
        await seed([person("Cheap", "A", expectedSalary=1200), person("Dear", "B", expectedSalary=3000)])
        query = SearchQuery.model_validate({"demographic": {"expectedSalary": {"min": 2000}}})
        page = await engine.search(query)
        assert [r["firstName"] for r in page.records] == ["Dear"]

    @pytest.mark.asyncio
    async def test_demographic_partial_match_is_case_insensitive(self, engine, seed):
        await seed([
            person("Maria", "Lopez", phone="+34 600 123 456", department="Housekeeping"),
            person("Marco", "Rossi", phone="+39 333 000 111", department="Kitchen"),
            person("Anna", "Bauer", phone="+49 170 555 555", department="Housekeeping"),
        ])

        page = await engine.search(SearchQuery.model_validate({"demographic": {"firstName": "MAR"}}))
        assert sorted(r["firstName"] for r in page.records) == ["Marco", "Maria"]

        page = await engine.search(SearchQuery.model_validate({"demographic": {"phone": "+34"}}))
        assert [r["firstName"] for r in page.records] == ["Maria"]

        page = await engine.search(
            SearchQuery.model_validate({"demographic": {"department": "house", "lastName": "bau"}})
        )
        assert [r["firstName"] for r in page.records] == ["Anna"]

    @pytest.mark.asyncio
    async def test_gender_is_exact(self, engine, seed):
        await seed([person("Ana", "A", gender="Female"), person("Ben", "B", gender="Male")])
        page = await engine.search(SearchQuery.model_validate({"demographic": {"gender": "Male"}}))
        assert [r["firstName"] for r in page.records] == ["Ben"]

    @pytest.mark.asyncio
    async def test_analyzed_filter(self, engine, seed):
        await seed([person("Done", "A"), person("Waiting", "B", analyzed=False, status="pending")])
        page = await engine.search(SearchQuery(analyzed=False))
        assert [r["firstName"] for r in page.records] == ["Waiting"]

    @pytest.mark.asyncio
    async def test_text_relevance_follows_field_weights(self, engine, seed):
        await seed([
            person("Ana", "Smith", email="ana.lopez@example.com"),
            person("Maria", "Lopez"),
            person("Ben", "Jones", analysis={"technicalSkills": ["Lopez Method"], "softSkills": []}),
            person("Cai", "Wong"),
        ])

        page = await engine.search(SearchQuery(search_term="lopez"))

        assert [r["firstName"] for r in page.records] == ["Maria", "Ben", "Ana"]
        assert page.records[0]["score"] > page.records[1]["score"] > page.records[2]["score"]

    @pytest.mark.asyncio
    async def test_equal_relevance_newest_first(self, engine, seed):
        await seed([person("Older", "Lopez"), person("Newer", "Lopez")])
        page = await engine.search(SearchQuery(search_term="Lopez"))
        assert [r["firstName"] for r in page.records] == ["Newer", "Older"]

    @pytest.mark.asyncio
    async def test_text_matches_tags(self, engine, seed):
        await seed([person("Ana", "A", tags=["skill:Guest Communication"]), person("Ben", "B")])
        page = await engine.search(SearchQuery(search_term="communication"))
        assert [r["firstName"] for r in page.records] == ["Ana"]


class TestFormatRecord:
    """Formatting of partially processed records"""

    def test_missing_analysis_and_tags(self):
        record = format_record({"id": "x", "filename": "cv.pdf", "fileId": "f"})
        assert record["analysis"] == {}
        assert record["tags"] == []
        assert record["status"] == "pending"
        assert record["analyzed"] is False
        assert record["firstName"] == ""
        assert record["age"] is None

    def test_text_score_weights(self):
        doc = {"firstName": "Lopez", "email": "lopez@example.com", "analysis": {"languages": [{"name": "Lopez"}]}}
        assert text_score(doc, "lopez") == 10 + 1 + 2
        assert text_score(doc, "") == 0
