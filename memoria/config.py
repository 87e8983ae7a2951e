"""
Configuration module for memoria.

Loads settings from a YAML file and secrets from environment variables.
Nothing is loaded at import time: build a Config with Config.load(path)
and pass it to the factories that need it.
"""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Literal, Optional

import yaml
from dotenv import load_dotenv

from .memory.locks import ScopeLogFilter

# Default config file path
CONFIG_FILE = Path("config.yaml")


def _load_yaml_config(path: Path) -> dict:
    """Load configuration from YAML file."""
    if path.exists():
        with open(path) as f:
            return yaml.safe_load(f) or {}
    return {}


def _section(cls, data: dict, name: str, unknown: list[str]):
    """
    Build one config section from its YAML mapping.

    Keys the section does not declare are collected in `unknown` so that
    validate() can report typos instead of silently ignoring them.
    """
    values = data.get(name) or {}
    if not isinstance(values, dict):
        unknown.append(f"{name} (expected a mapping, got {type(values).__name__})")
        return cls()
    known = {f.name for f in fields(cls) if f.init and not f.name.endswith("api_key")}
    for key in values:
        if key not in known:
            unknown.append(f"{name}.{key}")
    return cls(**{k: v for k, v in values.items() if k in known})


@dataclass
class LLMConfig:
    """Chat model used for extraction, classification and tool calls."""
    provider: Literal["openai", "google"] = "openai"
    openai_model: str = "gpt-4o-mini"
    google_model: str = "gemini-2.0-flash"
    temperature: float = 0.2
    # Tool rounds per run() call before the loop gives up
    max_tool_rounds: int = 5

    # Secrets from .env
    openai_api_key: str = field(default_factory=lambda: os.getenv("OPENAI_API_KEY", ""))
    google_api_key: str = field(default_factory=lambda: os.getenv("GOOGLE_API_KEY", ""))


@dataclass
class EmbeddingConfig:
    """Embedding provider settings."""
    provider: Literal["openai", "local"] = "openai"
    # OpenAI embedding model: "text-embedding-3-small" (1536d) or "text-embedding-3-large" (3072d)
    openai_model: str = "text-embedding-3-small"
    local_model: str = "all-MiniLM-L6-v2"
    # Override embedding dimensions (text-embedding-3-* only), None = model default
    dimensions: Optional[int] = None


@dataclass
class StoreConfig:
    """Where memories live."""
    backend: Literal["memory", "hnsw", "chroma"] = "memory"
    metric: Literal["cosine", "l2", "ip"] = "cosine"
    chroma_path: str = "./memory_store"
    collection_name: str = "memories"


@dataclass
class HNSWConfig:
    """
    Graph parameters for the HNSW store backend.

    Use the presets for common trade-offs; validate() returns warnings for
    settings that work but are likely to hurt.
    """
    m: int = 16
    ef_construction: int = 200
    ef_search: int = 50
    # Pools at or below this size are scanned exactly
    fallback_threshold: int = 100
    seed: Optional[int] = None

    @classmethod
    def balanced(cls) -> "HNSWConfig":
        return cls()

    @classmethod
    def high_performance(cls) -> "HNSWConfig":
        """Better recall at the cost of memory and build time."""
        return cls(m=32, ef_construction=400, ef_search=100)

    @classmethod
    def low_memory(cls) -> "HNSWConfig":
        return cls(m=8, ef_construction=100, ef_search=32)

    def estimate_memory_usage(self, vector_count: int, dimensions: int = 1536) -> float:
        """Rough memory footprint in MB: float32 vectors plus M links and bookkeeping."""
        bytes_per_vector = dimensions * 4 + self.m * 8 + 100
        return vector_count * bytes_per_vector / (1024 * 1024)

    def validate(self) -> list[str]:
        """
        Check the parameters.

        Raises:
            ValueError: A parameter is outside its valid range

        Returns:
            Warnings for valid but questionable settings.
        """
        if not 2 <= self.m <= 100:
            raise ValueError(f"hnsw.m must be between 2 and 100, got {self.m}")
        if self.ef_construction <= 0:
            raise ValueError("hnsw.ef_construction must be positive")
        if self.ef_search <= 0:
            raise ValueError("hnsw.ef_search must be positive")
        if self.fallback_threshold < 0:
            raise ValueError("hnsw.fallback_threshold cannot be negative")

        warnings = []
        if self.ef_construction < self.m:
            warnings.append(
                f"hnsw.ef_construction ({self.ef_construction}) is below m ({self.m}); "
                "graph quality will suffer"
            )
        if self.ef_search < 10:
            warnings.append(f"hnsw.ef_search ({self.ef_search}) is very low; recall will suffer")
        if self.m > 64:
            warnings.append(f"hnsw.m ({self.m}) is high; memory use grows with every link")
        estimate = self.estimate_memory_usage(10_000)
        if estimate > 1000:
            warnings.append(f"~{estimate:.0f}MB for 10k vectors (1536 dims)")
        return warnings


@dataclass
class RetentionConfig:
    """Per-scope storage bounds."""
    max_memories: int = 1000
    min_importance: str = "LOW"
    # e.g. {"Preference": "MEDIUM"}
    type_min_importance: dict[str, str] = field(default_factory=dict)


@dataclass
class ClassifierConfig:
    """Memory approval and classification settings."""
    duplicate_threshold: float = 0.95
    max_tags: int = 10
    max_memories_per_interaction: int = 5
    # Relevance below this level's threshold is not remembered
    min_importance: str = "LOW"
    custom_categories: list[str] = field(default_factory=list)
    # Domain preset: None, "clinical" or "legal"
    domain: Optional[str] = None
    entity_backend: Literal["llm", "spacy"] = "llm"
    spacy_model: str = "en_core_web_sm"


@dataclass
class RetryConfig:
    """Bounded retry for model and embedding calls."""
    attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0
    # Per-attempt timeout in seconds
    timeout: float = 30.0


@dataclass
class AppConfig:
    """Runtime behaviour of the manager."""
    log_level: str = "INFO"
    anonymous_mode: bool = True
    # Memories injected into a prompt by enhance_messages
    context_limit: int = 5
    min_similarity: float = 0.3


@dataclass
class Config:
    """Main configuration container."""
    llm: LLMConfig = field(default_factory=LLMConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    hnsw: HNSWConfig = field(default_factory=HNSWConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    app: AppConfig = field(default_factory=AppConfig)

    # Where this config came from, and anything in it we did not recognise
    source: Optional[Path] = None
    unknown_keys: list[str] = field(default_factory=list)

    @classmethod
    def load(cls, path: Optional[str | Path] = None, env_file: Optional[str] = None) -> "Config":
        """
        Load settings from a YAML file and secrets from the environment.

        Args:
            path: YAML file, defaults to ./config.yaml. A missing file
                  gives the defaults (validate() reports it).
            env_file: .env file to load, defaults to python-dotenv's search
        """
        load_dotenv(env_file)
        config_path = Path(path) if path else CONFIG_FILE
        data = _load_yaml_config(config_path)
        return cls.from_dict(data, source=config_path)

    @classmethod
    def from_dict(cls, data: dict[str, Any], source: Optional[Path] = None) -> "Config":
        unknown: list[str] = []
        sections = {
            "llm": LLMConfig,
            "embedding": EmbeddingConfig,
            "store": StoreConfig,
            "hnsw": HNSWConfig,
            "retention": RetentionConfig,
            "classifier": ClassifierConfig,
            "retry": RetryConfig,
            "app": AppConfig,
        }
        for name in data:
            if name not in sections:
                unknown.append(name)
        built = {name: _section(section_cls, data, name, unknown) for name, section_cls in sections.items()}
        return cls(**built, source=source, unknown_keys=unknown)

    def setup_logging(self) -> logging.Logger:
        """Configure and return the application logger."""
        # Reset existing handlers to ensure clean configuration
        root = logging.getLogger()
        if root.handlers:
            for handler in list(root.handlers):
                root.removeHandler(handler)

        logging.basicConfig(
            level=getattr(logging, self.app.log_level.upper(), logging.INFO),
            format="%(asctime)s - %(name)s - %(levelname)s%(scope_info)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        # Add filter to the handler created by basicConfig
        for handler in logging.getLogger().handlers:
            handler.addFilter(ScopeLogFilter())

        return logging.getLogger("memoria")

    def validate(self) -> list[str]:
        """
        Validate configuration and return list of missing/invalid settings.

        Returns:
            List of validation error messages, empty if all valid.
        """
        errors = []

        if self.source is not None and not self.source.exists():
            errors.append(f"Config file not found: {self.source} (copy config.yaml.example to config.yaml)")

        for key in self.unknown_keys:
            errors.append(f"Unknown config key: {key}")

        # LLM provider
        if self.llm.provider == "openai" and not self.llm.openai_api_key:
            errors.append("OPENAI_API_KEY is required when using OpenAI provider")
        elif self.llm.provider == "google" and not self.llm.google_api_key:
            errors.append("GOOGLE_API_KEY is required when using Google provider")
        elif self.llm.provider not in ("openai", "google"):
            errors.append(f"Unknown llm.provider: {self.llm.provider}")

        # Embeddings
        if self.embedding.provider == "openai" and not self.llm.openai_api_key:
            errors.append("OPENAI_API_KEY is required for OpenAI embeddings")
        elif self.embedding.provider not in ("openai", "local"):
            errors.append(f"Unknown embedding.provider: {self.embedding.provider}")

        if self.store.backend not in ("memory", "hnsw", "chroma"):
            errors.append(f"Unknown store.backend: {self.store.backend}")
        if self.store.metric not in ("cosine", "l2", "ip"):
            errors.append(f"Unknown store.metric: {self.store.metric}")

        if self.store.backend == "hnsw":
            try:
                self.hnsw.validate()
            except ValueError as e:
                errors.append(str(e))

        if self.retention.max_memories <= 0:
            errors.append("retention.max_memories must be greater than 0")
        if self.classifier.domain not in (None, "clinical", "legal"):
            errors.append(f"Unknown classifier.domain: {self.classifier.domain}")
        if not 0.0 <= self.classifier.duplicate_threshold <= 1.0:
            errors.append("classifier.duplicate_threshold must be between 0 and 1")
        if self.retry.attempts < 1:
            errors.append("retry.attempts must be at least 1")

        return errors
