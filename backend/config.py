"""Linkweaver configuration.

All tunables live on one explicit `LinkerConfig` object that is handed to every
component. Values come from constructor arguments or `LINKWEAVER_*` environment
variables (see `LinkerConfig.from_env`).
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_EMBEDDING_MODEL = "sentence-transformers/all-MiniLM-L6-v2"

# Generic technical / note-taking vocabulary that never makes a useful anchor.
DOMAIN_STOPWORDS: FrozenSet[str] = frozenset(
    """
    data information system process method function layer level type kind form format mode
    state status value result output input user client server service application
    file folder document page section part time date day week month year
    name title label description content text list array object item element component
    start end begin finish complete done new old current previous next first last
    main primary secondary default custom true false null undefined none empty
    error warning message response request connection link reference source target
    number count total size length width height key id code string integer boolean
    example sample test demo case scenario note notes todo task action step
    issue problem solution answer question point line block area region zone
    option setting config configuration parameter feature capability ability functionality
    protocol interface implementation specification model view controller handler manager
    create read update delete add remove get set put post send receive
    open close load save import export enable disable activate deactivate
    show hide display render present network internet web http https
    security encryption authentication authorization access permission role policy
    session cookie token credential address port host domain path route
    packet frame segment datagram payload transmission transfer delivery routing
    control management monitoring logging analysis processing handling operation
    used using like such also well responsible ensure provide include contain
    presentation transport physical compressed compression encrypted transmitted
    a an the is it to of in on at by for and or but not no yes all any some each
    this that these those what which who how when where why can may will shall should
    would could must need have has had do does did be been being are was were am
    got give gave take took make made see saw know knew think thought want wanted
    use work works working
    """.split()
)

# Strictness presets are tuning data only; they never change matcher behaviour.
MATCHER_PRESETS: Dict[str, Dict[str, object]] = {
    "strict": {
        "combined_threshold": 0.5,
        "specificity_ratio": 3.0,
        "max_vault_frequency_percent": 3.0,
        "min_context_similarity": 0.6,
        "enable_keyword_tier": False,
        "max_links_per_note": 5,
    },
    "balanced": {
        "combined_threshold": 0.4,
        "specificity_ratio": 2.0,
        "max_vault_frequency_percent": 5.0,
        "min_context_similarity": 0.5,
        "enable_keyword_tier": True,
        "max_links_per_note": 10,
    },
    "relaxed": {
        "combined_threshold": 0.3,
        "specificity_ratio": 1.5,
        "max_vault_frequency_percent": 10.0,
        "min_context_similarity": 0.4,
        "enable_keyword_tier": True,
        "max_links_per_note": 15,
    },
}


def _env_str(name: str, default: str) -> str:
    value = os.environ.get(f"LINKWEAVER_{name}")
    return value.strip() if value and value.strip() else default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(f"LINKWEAVER_{name}")
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"LINKWEAVER_{name} must be a number, got {raw!r}")


def _env_int(name: str, default: int) -> int:
    return int(_env_float(name, float(default)))


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(f"LINKWEAVER_{name}")
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() not in ("0", "false", "no", "off")


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.environ.get(f"LINKWEAVER_{name}")
    if raw is None:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class LinkerConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    vault_dir: str = "vault"
    data_dir: Optional[str] = None

    # Thresholds
    lexical_threshold: float = Field(default=0.3, alias="tfidf_threshold")
    semantic_threshold: float = 0.3
    combined_threshold: float = 0.4

    # Hybrid weights
    lexical_weight: float = Field(default=0.6, alias="tfidf_weight")
    semantic_weight: float = 0.4
    ngram_weight: float = 0.6
    context_weight: float = 0.4

    max_suggestions: int = 10
    max_realtime_suggestions: int = 5
    max_links_per_note: int = 10
    min_confidence: float = 0.3

    # Exclusions
    excluded_folders: List[str] = Field(default_factory=list)
    excluded_tags: List[str] = Field(default_factory=lambda: ["#draft", "#private"])
    min_note_length: int = 50

    # Signals
    enable_semantic: bool = True
    enable_embeddings: bool = False
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    embedding_batch_size: int = 8
    max_sequence_length: int = 256
    allow_model_download: bool = True
    enable_ner: bool = True

    # Keyword matcher
    enable_entity_tier: bool = True
    enable_phrase_tier: bool = True
    enable_keyword_tier: bool = True
    specificity_ratio: float = 2.0
    max_vault_frequency_percent: float = 5.0
    min_keyword_length: int = 4
    enable_context_verification: bool = True
    min_context_similarity: float = 0.5
    domain_stopwords: FrozenSet[str] = DOMAIN_STOPWORDS

    cache_enabled: bool = True

    def resolved_data_dir(self) -> Path:
        if self.data_dir:
            return Path(self.data_dir)
        return Path(self.vault_dir) / ".linkweaver"

    def with_preset(self, name: str) -> "LinkerConfig":
        preset = MATCHER_PRESETS.get(name)
        if preset is None:
            raise ValueError(f"Unknown matcher preset: {name!r} (expected one of {sorted(MATCHER_PRESETS)})")
        return self.model_copy(update=preset)

    @classmethod
    def from_env(cls) -> "LinkerConfig":
        config = cls(
            vault_dir=_env_str("VAULT_DIR", "vault"),
            data_dir=os.environ.get("LINKWEAVER_DATA_DIR") or None,
            lexical_threshold=_env_float("LEXICAL_THRESHOLD", 0.3),
            semantic_threshold=_env_float("SEMANTIC_THRESHOLD", 0.3),
            combined_threshold=_env_float("COMBINED_THRESHOLD", 0.4),
            lexical_weight=_env_float("LEXICAL_WEIGHT", 0.6),
            semantic_weight=_env_float("SEMANTIC_WEIGHT", 0.4),
            max_suggestions=_env_int("MAX_SUGGESTIONS", 10),
            max_links_per_note=_env_int("MAX_LINKS_PER_NOTE", 10),
            excluded_folders=_env_list("EXCLUDED_FOLDERS", []),
            excluded_tags=_env_list("EXCLUDED_TAGS", ["#draft", "#private"]),
            min_note_length=_env_int("MIN_NOTE_LENGTH", 50),
            enable_semantic=_env_bool("ENABLE_SEMANTIC", True),
            enable_embeddings=_env_bool("ENABLE_EMBEDDINGS", False),
            embedding_model=_env_str("EMBED_MODEL", DEFAULT_EMBEDDING_MODEL),
            embedding_batch_size=_env_int("EMBED_BATCH_SIZE", 8),
            allow_model_download=_env_bool("ALLOW_MODEL_DOWNLOAD", True),
            enable_ner=_env_bool("ENABLE_NER", True),
            enable_context_verification=_env_bool("CONTEXT_VERIFICATION", True),
            min_context_similarity=_env_float("MIN_CONTEXT_SIMILARITY", 0.5),
        )
        preset = os.environ.get("LINKWEAVER_PRESET", "").strip()
        if preset:
            config = config.with_preset(preset)
        return config
