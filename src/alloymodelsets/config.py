from __future__ import annotations

from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .utils import read_json, seconds_to_ns

UTIL_MODEL_NAMES = [
    "boolean.als",
    "graph.als",
    "integer.als",
    "natural.als",
    "ordering.als",
    "relation.als",
    "seqrel.als",
    "sequence.als",
    "sequniv.als",
    "ternary.als",
    "time.als",
]


class CleanupPolicy(BaseModel):
    remove_non_alloy_files: bool = True
    remove_util_models: bool = True
    remove_duplicate_files: bool = True
    remove_multiple_versions: bool = True
    remove_do_not_parse: bool = True
    hitlist_filter: bool = False
    hitlist_names: List[str] = Field(default_factory=list)
    hitlist_protected_dir: Optional[str] = None
    common_file_names: List[str] = Field(default_factory=list)
    util_model_names: List[str] = Field(default_factory=lambda: list(UTIL_MODEL_NAMES))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="ALLOYMODELSETS_")

    model_extension: str = ".als"
    time_lower_s: float = 2 * 60
    time_upper_s: float = 10 * 60
    min_scope: int = 10
    max_scope: int = 300
    num_sat_wanted: int = 200
    num_unsat_wanted: int = 200
    seed: int = 1337
    command_policy: Literal["random", "all"] = "random"
    resume_cursor: int = 0
    solver_cmd: List[str] = Field(default_factory=list)
    parse_cmd: List[str] = Field(default_factory=list)
    parse_timeout_s: float = 60.0
    existing_model_sets: List[str] = Field(default_factory=list)
    cleanup: CleanupPolicy = Field(default_factory=CleanupPolicy)

    @model_validator(mode="after")
    def _check_bounds(self) -> "Settings":
        if self.time_lower_s < 0 or self.time_upper_s < self.time_lower_s:
            raise ValueError("time window must satisfy 0 <= time_lower_s <= time_upper_s")
        if self.min_scope < 0 or self.max_scope < self.min_scope:
            raise ValueError("scope bounds must satisfy 0 <= min_scope <= max_scope")
        if self.num_sat_wanted < 0 or self.num_unsat_wanted < 0:
            raise ValueError("quota targets must be non-negative")
        if self.resume_cursor < 0:
            raise ValueError("resume_cursor must be non-negative")
        return self

    @property
    def lower_ns(self) -> int:
        return seconds_to_ns(self.time_lower_s)

    @property
    def upper_ns(self) -> int:
        return seconds_to_ns(self.time_upper_s)

    @property
    def hard_timeout_s(self) -> float:
        # The child's own clock starts after JVM start-up and parsing.
        return self.time_upper_s + 1


def load_settings(config: Optional[Path]) -> Settings:
    if config is None:
        return Settings()
    data = read_json(config)
    return Settings(**data)
