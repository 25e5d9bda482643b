"""
Runtime configuration, read from the environment (and .env) once per process
"""
import os
from functools import lru_cache
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from resume_analyzer.utils.exceptions import ConfigurationError


class LLMSettings(BaseModel):
    """Ollama generation settings shared by the fixer and the parser"""
    model_name: str = Field(default="llama3.1:8b", description="LLM model name")
    base_url: str = Field(default="http://localhost:11434", description="Ollama base URL")
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    fixer_temperature: float = Field(default=0.5, ge=0.0, le=2.0)
    timeout: int = Field(default=120, ge=1, le=600, description="HTTP timeout per request in seconds")
    retry_attempts: int = Field(default=3, ge=1, le=10)
    retry_backoff: float = Field(default=1.0, ge=0.0, le=60.0)


class PipelineSettings(BaseModel):
    """Per-stage limits for the analysis pipeline"""
    acquisition_timeout: float = Field(default=120.0, gt=0)
    fixer_timeout: float = Field(default=120.0, gt=0)
    parser_timeout: float = Field(default=180.0, gt=0)
    max_concurrent: int = Field(default=5, ge=1, le=50, description="Documents analysed at once in a batch")
    min_text_length: int = Field(default=50, ge=0, description="Fewer extracted characters is an acquisition failure")
    max_text_length: int = Field(default=100000, ge=1000)
    download_timeout: float = Field(default=30.0, gt=0)


class TaxonomySettings(BaseModel):
    """Thresholds used when deriving tags"""
    department_threshold: int = Field(default=60, ge=0, le=100, description="Department scores above this emit dept: tags")
    skill_min_level: int = Field(default=3, ge=1, le=5, description="Skills at or above this level emit skill: tags")


class SearchSettings(BaseModel):
    page_size: int = Field(default=20, ge=1, le=100)
    max_page_size: int = Field(default=100, ge=1, le=500)


class AppSettings(BaseModel):
    mongo_details: str = "mongodb://localhost:27017"
    db_name: str = "resume_analyzer"
    store_backend: Literal["mongo", "memory"] = "mongo"
    llm: LLMSettings = Field(default_factory=LLMSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    taxonomy: TaxonomySettings = Field(default_factory=TaxonomySettings)
    search: SearchSettings = Field(default_factory=SearchSettings)


# env var -> (section, field)
ENV_MAPPING = {
    "MONGO_DETAILS": (None, "mongo_details"),
    "DB_NAME": (None, "db_name"),
    "STORE_BACKEND": (None, "store_backend"),
    "OLLAMA_BASE_URL": ("llm", "base_url"),
    "LLM_MODEL": ("llm", "model_name"),
    "LLM_TEMPERATURE": ("llm", "temperature"),
    "LLM_TIMEOUT": ("llm", "timeout"),
    "LLM_RETRY_ATTEMPTS": ("llm", "retry_attempts"),
    "ACQUISITION_TIMEOUT": ("pipeline", "acquisition_timeout"),
    "FIXER_TIMEOUT": ("pipeline", "fixer_timeout"),
    "PARSER_TIMEOUT": ("pipeline", "parser_timeout"),
    "MAX_CONCURRENT": ("pipeline", "max_concurrent"),
    "MIN_TEXT_LENGTH": ("pipeline", "min_text_length"),
    "DEPARTMENT_THRESHOLD": ("taxonomy", "department_threshold"),
    "SKILL_MIN_LEVEL": ("taxonomy", "skill_min_level"),
    "PAGE_SIZE": ("search", "page_size"),
}


def settings_from_env(environ=None) -> AppSettings:
    """Build AppSettings from environment variables; unset variables keep their defaults"""
    environ = os.environ if environ is None else environ
    data = {"llm": {}, "pipeline": {}, "taxonomy": {}, "search": {}}
    for env_name, (section, field) in ENV_MAPPING.items():
        value = environ.get(env_name)
        if value is None or value == "":
            continue
        if section is None:
            data[field] = value
        else:
            data[section][field] = value

    try:
        return AppSettings.model_validate(data)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}", cause=e) from e


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    load_dotenv()
    return settings_from_env()
