"""Constants and default values for crewgate."""

import re
from pathlib import Path

# Default model configuration
DEFAULT_MODEL = "claude-sonnet-4-5-20250929"
DEFAULT_MAX_TURNS = 20

# Data directory (sessions, metadata, queues)
DEFAULT_DATA_DIR = Path.home() / ".crewgate"
SESSIONS_DIRNAME = "agent-sessions"
METADATA_FILENAME = "sessions-metadata.json"

# Tool sandbox defaults
DEFAULT_TOOL_NAMES = ("Read", "Write", "Edit", "Glob", "Grep", "Bash", "WebFetch")
DEFAULT_MAX_READ_MB = 8
DEFAULT_MAX_WRITE_MB = 2
DEFAULT_GLOB_MAX_RESULTS = 2000
DEFAULT_GREP_MAX_MATCHES = 200
DEFAULT_FETCH_BYTES = 100_000
DEFAULT_FETCH_TIMEOUT_MS = 20_000
DEFAULT_BASH_TIMEOUT_MS = 120_000
MAX_BASH_OUTPUT_BYTES = 5 * 1024 * 1024

# Provider defaults
DEFAULT_REQUEST_TIMEOUT_MS = 60_000
OPENAI_BASE_URL = "https://api.openai.com/v1"
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

# Directories never walked by Glob/Grep
IGNORED_DIRS = frozenset({
    ".git",
    "node_modules",
    "dist",
    "build",
    ".next",
    "out",
    ".cache",
    "__pycache__",
    ".venv",
})

# Dangerous command patterns (for Bash safety checks)
DANGEROUS_PATTERNS = [
    (re.compile(r'\bsudo\b'), "Use of sudo detected"),
    (re.compile(r'\brm\s+-rf\s+/(\s|$)'), "Recursive delete of root directory"),
    (re.compile(r':\(\)\s*\{.*\|.*\&.*\}'), "Fork bomb pattern detected"),
    (re.compile(r'curl.*\|\s*(ba)?sh'), "Piping curl to shell"),
    (re.compile(r'wget.*\|\s*(ba)?sh'), "Piping wget to shell"),
    (re.compile(r'\bchmod\s+777'), "chmod 777 detected"),
    (re.compile(r'>\s*/dev/sd[a-z]'), "Writing to block device"),
    (re.compile(r'\bdd\s+.*of=/dev/'), "dd to block device"),
]

# Environment variables passed through to shell commands
BASH_ENV_PASSTHROUGH = ["PATH", "HOME", "USER", "LANG", "PYTHONPATH", "VIRTUAL_ENV"]

# Edit intent protocol
MAX_APPROVED_FILES = 25
HOT_SPOTS_FILE = Path(".codex") / "context" / "hot-spots.yaml"
DEFAULT_HOT_SPOT_PATTERNS = [
    "apps/server/src/routes/fs/**",
    "libs/platform/src/secure-fs.ts",
    "apps/server/src/routes/terminal/**",
    "apps/server/src/services/terminal-service.ts",
    "apps/server/src/services/agent-service.ts",
    "apps/server/src/routes/auto-mode/**",
    "apps/server/src/routes/worktree/**",
    "libs/git-utils/src/**",
    "apps/ui/src/main.ts",
    "init.mjs",
    "apps/server/src/lib/auth.ts",
    "apps/server/src/routes/setup/**",
]

# Project context files folded into the system prompt
CONTEXT_FILES = ["CLAUDE.md", "AGENTS.md", "CODE_QUALITY.md"]

# Image attachments
IMAGE_MIME_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
}

# Claude model aliases
CLAUDE_MODEL_MAP = {
    "haiku": "claude-haiku-4-5-20251001",
    "sonnet": "claude-sonnet-4-5-20250929",
    "opus": "claude-opus-4-5-20251101",
}

# Model catalog, keyed by provider name
SUPPORTED_MODELS = {
    "claude": [
        {
            "id": "claude-opus-4-5-20251101",
            "name": "Claude Opus 4.5",
            "description": "Most capable model for complex, long-running work.",
            "context_window": 200000,
            "max_output_tokens": 32000,
            "supports_vision": True,
            "tier": "premium",
        },
        {
            "id": "claude-sonnet-4-5-20250929",
            "name": "Claude Sonnet 4.5",
            "description": "Best balance of speed and capability for coding.",
            "context_window": 200000,
            "max_output_tokens": 64000,
            "supports_vision": True,
            "tier": "standard",
        },
        {
            "id": "claude-haiku-4-5-20251001",
            "name": "Claude Haiku 4.5",
            "description": "Fast and cost-effective.",
            "context_window": 200000,
            "max_output_tokens": 64000,
            "supports_vision": True,
            "tier": "basic",
        },
    ],
    "openai": [
        {
            "id": "gpt-5.2",
            "name": "GPT-5.2",
            "description": "Latest OpenAI flagship model.",
            "context_window": 256000,
            "max_output_tokens": 32000,
            "supports_vision": True,
            "tier": "premium",
        },
        {
            "id": "gpt-5.2-codex",
            "name": "GPT-5.2 Codex",
            "description": "GPT-5.2 tuned for coding tasks.",
            "context_window": 256000,
            "max_output_tokens": 32000,
            "supports_vision": True,
            "tier": "premium",
        },
        {
            "id": "gpt-5.1-codex-mini",
            "name": "GPT-5.1 Codex Mini",
            "description": "Lightweight codex model.",
            "context_window": 256000,
            "max_output_tokens": 16000,
            "supports_vision": False,
            "tier": "basic",
        },
        {
            "id": "gpt-4o",
            "name": "GPT-4o",
            "description": "Fast multimodal model.",
            "context_window": 128000,
            "max_output_tokens": 16000,
            "supports_vision": True,
            "tier": "standard",
        },
        {
            "id": "gpt-4o-mini",
            "name": "GPT-4o Mini",
            "description": "Cost-efficient multimodal model.",
            "context_window": 128000,
            "max_output_tokens": 16000,
            "supports_vision": True,
            "tier": "basic",
        },
        {
            "id": "o1",
            "name": "o1",
            "description": "Reasoning-focused model.",
            "context_window": 200000,
            "max_output_tokens": 16000,
            "supports_vision": False,
            "tier": "premium",
        },
    ],
    "openrouter": [
        {
            "id": "openrouter/auto",
            "name": "OpenRouter Auto",
            "description": "OpenRouter auto-routing across providers.",
            "context_window": None,
            "max_output_tokens": None,
            "supports_vision": True,
            "tier": "standard",
        },
        {
            "id": "openrouter/openai/gpt-4o",
            "name": "OpenRouter GPT-4o",
            "description": "OpenRouter route to GPT-4o.",
            "context_window": 128000,
            "max_output_tokens": 16000,
            "supports_vision": True,
            "tier": "standard",
        },
    ],
}
