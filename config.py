"""
Configuration module for Bedrock Pilot.
Handles environment variables, model settings, budgets and project-local paths.
"""

import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


@dataclass
class AWSConfig:
    """AWS-specific configuration"""
    region: str = os.getenv("AWS_REGION", "us-east-1")
    access_key_id: str = os.getenv("AWS_ACCESS_KEY_ID", "")
    secret_access_key: str = os.getenv("AWS_SECRET_ACCESS_KEY", "")
    session_token: str = os.getenv("AWS_SESSION_TOKEN", "")
    profile_name: str = os.getenv("AWS_PROFILE", "")

    def has_explicit_credentials(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)

    def has_session_token(self) -> bool:
        return bool(self.session_token)

    def has_profile(self) -> bool:
        return bool(self.profile_name)


@dataclass
class ModelConfig:
    """Model-specific configuration"""
    model_id: str = os.getenv("BEDROCK_MODEL_ID", "us.anthropic.claude-sonnet-4-5-20250929-v1:0")
    max_tokens: int = int(os.getenv("MAX_TOKENS", "16000"))
    temperature: Optional[float] = float(os.getenv("TEMPERATURE", "1")) if os.getenv("TEMPERATURE") else None


@dataclass
class AppConfig:
    """Application-specific configuration"""
    title: str = "Bedrock Pilot"
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_file: str = os.getenv("LOG_FILE", "bedrock_pilot.log")
    app_dir_name: str = os.getenv("APP_DIR_NAME", ".bedrock-pilot")
    # Embeddings
    embedding_model_id: str = os.getenv("EMBEDDING_MODEL_ID", "cohere.embed-english-v3")
    embedding_dimensions: int = int(os.getenv("EMBEDDING_DIMENSIONS", "768"))
    # Tool-call loops
    max_tool_iterations: int = int(os.getenv("MAX_TOOL_ITERATIONS", "10"))
    max_fix_iterations: int = int(os.getenv("MAX_FIX_ITERATIONS", "5"))
    history_max_tokens: int = int(os.getenv("HISTORY_MAX_TOKENS", "50000"))
    # Retry wrapper
    retry_max_retries: int = int(os.getenv("RETRY_MAX_RETRIES", "3"))
    retry_base_delay_ms: int = int(os.getenv("RETRY_BASE_DELAY_MS", "5000"))
    retry_max_delay_ms: int = int(os.getenv("RETRY_MAX_DELAY_MS", "60000"))
    model_retry_max_delay_ms: int = int(os.getenv("MODEL_RETRY_MAX_DELAY_MS", "120000"))
    # Timeouts and TTLs (seconds)
    command_timeout: int = int(os.getenv("COMMAND_TIMEOUT", "60"))
    diagnostics_timeout: int = int(os.getenv("DIAGNOSTICS_TIMEOUT", "30"))
    watcher_debounce: float = float(os.getenv("WATCHER_DEBOUNCE", "2.0"))
    index_ttl: float = float(os.getenv("INDEX_TTL", "60"))
    tool_cache_ttl: float = float(os.getenv("TOOL_CACHE_TTL", "30"))
    # Agent mode
    agent_max_retries: int = int(os.getenv("AGENT_MAX_RETRIES", "3"))
    agent_max_total_retries: int = int(os.getenv("AGENT_MAX_TOTAL_RETRIES", "10"))
    agent_auto_fix: bool = os.getenv("AGENT_AUTO_FIX", "true").lower() == "true"
    agent_verbose: bool = os.getenv("AGENT_VERBOSE", "true").lower() == "true"
    # Skills shared across projects, each a folder holding SKILL.md
    skills_dir: str = os.getenv("SKILLS_DIR", os.path.join(os.path.expanduser("~"), ".bedrock-pilot", "skills"))
    docs_dir_name: str = os.getenv("DOCS_DIR_NAME", "docs")


# Create global config instances
aws_config = AWSConfig()
model_config = ModelConfig()
app_config = AppConfig()


def app_dir(root: str) -> str:
    """Project-local directory holding caches, specs and steering files."""
    return os.path.join(os.path.abspath(root), app_config.app_dir_name)


def cache_dir(root: str) -> str:
    return os.path.join(app_dir(root), "cache")


def specs_dir(root: str) -> str:
    return os.path.join(app_dir(root), "specs")


def steering_dir(root: str) -> str:
    return os.path.join(app_dir(root), "steering")


def project_skills_dir(root: str) -> str:
    return os.path.join(app_dir(root), "skills")


def docs_dir(root: str) -> str:
    """User-maintained API and SDK notes, at the project root."""
    return os.path.join(os.path.abspath(root), app_config.docs_dir_name)


def get_credentials_info() -> str:
    if aws_config.has_profile():
        return f"Using AWS profile: {aws_config.profile_name}"
    elif aws_config.has_explicit_credentials():
        if aws_config.has_session_token():
            return "Using temporary credentials (with session token)"
        return "Using explicit credentials"
    return "Using default credential chain"
