from __future__ import annotations

import os
from typing import Literal, Mapping, Optional

from pydantic import BaseModel, Field, field_validator

from auditfeed.normalize import LabelPolicy

# ----------------------------
# Defaults
# ----------------------------
ENV_PREFIX = "AUDITFEED_"

DEFAULT_DIRECTORY = "./data"
DEFAULT_META_DIR = "./meta"
DEFAULT_REST_URL = "http://localhost:8080/metadata/JSON"
DEFAULT_TYPE = "adabas-auditing"


class Settings(BaseModel):
    """
    Options recognized by the watcher. `from_env` reads them from
    AUDITFEED_* variables:
      AUDITFEED_DIRECTORY=/var/audit AUDITFEED_TYPE=adabas-auditing ...
    """
    directory: str = DEFAULT_DIRECTORY
    meta_dir: str = DEFAULT_META_DIR
    rest_url: str = DEFAULT_REST_URL
    type: Optional[str] = DEFAULT_TYPE
    label_policy: LabelPolicy = LabelPolicy.OVERWRITE
    strategy: Literal["poll", "block"] = "poll"
    poll_interval: float = Field(default=0.1, gt=0)
    with_auxiliary_service: bool = True
    wrapper_key: Optional[str] = None
    service_ready_timeout: float = Field(default=2.0, ge=0)
    log_level: str = "INFO"

    @field_validator("type", "wrapper_key", mode="before")
    @classmethod
    def _blank_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        return v.upper()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "Settings":
        env = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            raw = env.get(ENV_PREFIX + name.upper())
            if raw is not None:
                values[name] = raw
        values.update(overrides)
        return cls(**values)
