"""
Configuration module for the study-resource RAG core.
Handles all settings, environment variables, and model configurations.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

EMBEDDING_PROVIDERS = ("sentence-transformers", "ollama")


@dataclass
class ChunkingConfig:
    """Chunking configuration (sizes in estimated tokens)."""
    target_token_count: int = 1000
    overlap_tokens: int = 200


@dataclass
class EmbeddingConfig:
    """Embedding model configuration."""
    # 'sentence-transformers' (local) or 'ollama' (HTTP)
    provider: str = field(
        default_factory=lambda: os.getenv("EMBEDDING_PROVIDER", "sentence-transformers")
    )

    # Local model settings
    model_name: str = field(
        default_factory=lambda: os.getenv(
            "EMBEDDING_MODEL", "sentence-transformers/all-mpnet-base-v2"
        )
    )
    device: str = field(
        default_factory=lambda: os.getenv("DEVICE", "cpu")
    )

    # Ollama settings
    ollama_base_url: str = field(
        default_factory=lambda: os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
    )
    ollama_model: str = field(
        default_factory=lambda: os.getenv("OLLAMA_EMBED_MODEL", "nomic-embed-text")
    )

    dimension: int = 768
    batch_size: int = 16
    max_workers: int = 4  # Concurrent embedding requests per resource
    cache_enabled: bool = True

    # Timeout and retry settings
    timeout: float = 30  # seconds
    max_retries: int = 3
    retry_delay: float = 1.0


@dataclass
class RetrievalConfig:
    """Retrieval configuration."""
    similarity_threshold: float = 0.7
    default_limit: int = 5
    chat_limit: int = 3  # Chunks injected into a chat prompt


@dataclass
class VectorStoreConfig:
    """Vector store configuration."""
    db_path: str = field(
        default_factory=lambda: os.getenv(
            "VECTOR_STORE_PATH",
            str(Path(__file__).parent / "data" / "vector_store.db")
        )
    )
    timeout: float = 10.0  # seconds to wait on a locked database


@dataclass
class LoaderConfig:
    """Document download configuration."""
    timeout: float = 30  # seconds
    max_bytes: int = 50 * 1024 * 1024


@dataclass
class AppConfig:
    """Main application configuration."""
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    vector_store: VectorStoreConfig = field(default_factory=VectorStoreConfig)
    loader: LoaderConfig = field(default_factory=LoaderConfig)

    # App settings
    debug: bool = field(
        default_factory=lambda: os.getenv("DEBUG", "false").lower() == "true"
    )
    log_level: str = field(
        default_factory=lambda: os.getenv("LOG_LEVEL", "INFO")
    )

    def validate(self) -> bool:
        """Validate configuration and return True if valid."""
        errors = []

        if self.embedding.provider not in EMBEDDING_PROVIDERS:
            errors.append(
                f"EMBEDDING_PROVIDER must be one of {', '.join(EMBEDDING_PROVIDERS)}"
            )

        if self.chunking.target_token_count < 1:
            errors.append("target_token_count must be positive")

        if self.chunking.overlap_tokens >= self.chunking.target_token_count:
            # Still terminates, but consecutive chunks no longer overlap usefully
            logger.warning("overlap_tokens is not smaller than target_token_count")

        if not 0 <= self.retrieval.similarity_threshold < 1:
            errors.append("similarity_threshold must be in [0, 1)")

        if errors:
            for error in errors:
                logger.error(f"Configuration error: {error}")
            return False

        return True


# Global configuration instance
config = AppConfig()


def load_config() -> AppConfig:
    """Load and validate configuration."""
    global config
    config = AppConfig()

    # Set logging level
    logging.getLogger().setLevel(getattr(logging, config.log_level.upper(), logging.INFO))

    return config


def get_config() -> AppConfig:
    """Get current configuration."""
    return config
