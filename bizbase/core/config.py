# bizbase/core/config.py
"""Application settings read from the environment."""

import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

load_dotenv()

SUPPORTED_DIALECTS = ("mssql", "mysql")
SUPPORTED_IN_STRATEGIES = ("auto", "in", "join", "exists")


class Settings(BaseModel):
    """Runtime configuration for the engine and the HTTP layer."""

    database_url: str = "mssql+aioodbc://localhost/bizbase?driver=ODBC+Driver+18+for+SQL+Server"
    sql_dialect: str = "mssql"
    in_operator_strategy: str = "auto"
    max_list_parameters: Optional[int] = None
    slow_query_threshold_ms: int = 1000
    slow_request_threshold_ms: int = 3000
    error_mappings_file: Optional[str] = None
    business_objects_file: Optional[str] = None
    audit_user_table: str = "Security_User"
    audit_user_key: str = "UserId"
    audit_user_name: str = "UserName"
    application_id: str = "Unknown"
    log_level: str = "INFO"

    @field_validator("sql_dialect")
    @classmethod
    def validate_dialect(cls, value: str) -> str:
        value = value.lower()
        if value not in SUPPORTED_DIALECTS:
            raise ValueError(f"Unsupported SQL dialect: {value}")
        return value

    @field_validator("in_operator_strategy")
    @classmethod
    def validate_strategy(cls, value: str) -> str:
        if value not in SUPPORTED_IN_STRATEGIES:
            raise ValueError(f"Invalid IN operator strategy: {value}")
        return value

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, keeping defaults for unset ones."""
        values = {}
        for field_name in cls.model_fields:
            raw = os.getenv(field_name.upper())
            if raw is not None and raw != "":
                values[field_name] = raw
        return cls(**values)


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
