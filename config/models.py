from pydantic import BaseModel, ConfigDict, Field
from typing import List, Literal, Optional, Dict, Any, Tuple

DEFAULT_EXCLUDE_PATTERNS = (
    "*.lock",
    "*.min.js",
    "*.map",
    "node_modules/**",
    "dist/**",
    "build/**",
    "*.svg",
    "*.png",
    "*.jpg",
    "*.jpeg",
    "*.gif",
    "*.ico",
)

class ModelConfig(BaseModel):
    provider: Literal["openai", "anthropic", "openrouter", "dummy"] = "openai"
    name: str = "gpt-4"
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    timeout_sec: int = 60
    parameters: Dict[str, Any] = Field(default_factory=dict)

class ReviewConfig(BaseModel):
    """Review settings. Frozen so the selector and aggregator can share it across calls."""

    model_config = ConfigDict(frozen=True)

    max_files: int = Field(20, ge=1, le=100, description="最多评审的文件数量")
    exclude_patterns: Tuple[str, ...] = Field(
        default=DEFAULT_EXCLUDE_PATTERNS,
        description="排除的 glob 模式，按顺序匹配",
    )
    review_level: Literal["basic", "standard", "detailed"] = "standard"
    language_hints: Optional[str] = None
    custom_prompts: Dict[str, str] = Field(default_factory=dict, description="'system' 替换系统提示，'review' 追加到评审说明")
    enable_security_review: bool = True
    enable_performance_review: bool = True
    enable_best_practices: bool = True
    concurrency: int = Field(4, ge=1, le=32, description="并发评审的文件数量")

class GitHubConfig(BaseModel):
    token: Optional[str] = None
    repository: Optional[str] = None  # owner/repo
    api_url: str = "https://api.github.com"
    timeout_sec: int = 30

class Config(BaseModel):
    model: ModelConfig = Field(default_factory=ModelConfig, description="LLM 模型相关配置")
    review: ReviewConfig = Field(default_factory=ReviewConfig, description="文件筛选与评审相关配置")
    github: GitHubConfig = Field(default_factory=GitHubConfig, description="GitHub API 相关配置")
