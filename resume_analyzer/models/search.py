from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from resume_analyzer.services.taxonomy import Tag


class NumericRange(BaseModel):
    """Inclusive range; either bound may be left open"""
    min: Optional[float] = None
    max: Optional[float] = None

    @model_validator(mode="before")
    @classmethod
    def from_pair(cls, data):
        # the search UI sends ranges as [low, high]
        if isinstance(data, (list, tuple)):
            if len(data) != 2:
                raise ValueError("range must have exactly two values")
            return {"min": data[0], "max": data[1]}
        return data

    @model_validator(mode="after")
    def ordered(self):
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("range minimum is greater than maximum")
        return self


class DemographicFilter(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    department: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    birthdate: Optional[str] = None
    gender: Optional[str] = None
    age: Optional[NumericRange] = None
    expected_salary: Optional[NumericRange] = None


class SearchQuery(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    search_term: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    demographic: DemographicFilter = Field(default_factory=DemographicFilter)
    analyzed: Optional[bool] = None
    status: Optional[str] = None
    page: int = Field(default=1, ge=1)
    limit: Optional[int] = Field(default=None, ge=1)

    @field_validator("search_term", mode="before")
    @classmethod
    def blank_term(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator("tags", mode="before")
    @classmethod
    def clean_tags(cls, v):
        # malformed filters raise the service ValidationError (HTTP 400), not a 422
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        return [str(Tag.parse(t)) for t in v if isinstance(t, str) and t.strip()]


class SearchPage(BaseModel):
    records: List[Dict[str, Any]]
    total: int
    page: int
    limit: int
    pages: int
