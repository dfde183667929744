"""
Application configuration (env, settings, constants).

Responsibility: Centralize config loading, environment variables, and app-wide
constants. Keeps the rest of the app decoupled from how config is sourced.
"""

import os

from dotenv import load_dotenv

load_dotenv()

# OpenAI (agent LLM)
OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "").strip()
OPENAI_LLM_MODEL: str = (
    os.getenv("OPENAI_LLM_MODEL", "gpt-4o-mini").strip() or "gpt-4o-mini"
)

# Brave Search (web_search tool). Without a key the tool returns placeholder results.
BRAVE_API_KEY: str = os.getenv("BRAVE_API_KEY", "").strip()
BRAVE_SEARCH_URL: str = "https://api.search.brave.com/res/v1/web/search"

# API timeouts (seconds)
LLM_API_TIMEOUT: float = 60.0
SEARCH_API_TIMEOUT: float = 10.0
FETCH_API_TIMEOUT: float = 15.0
TOOL_CALL_TIMEOUT: float = 20.0

# Agent loop
MAX_TOOL_ROUNDS: int = 3
MAX_PARALLEL_TOOLS: int = 4
AGENT_MAX_TOKENS: int = 4000
AGENT_TEMPERATURE: float = 0.3
REPAIR_MAX_TOKENS: int = 500
REPAIR_TEMPERATURE: float = 0.1

# fetch_page limits
FETCH_MAX_CHARS: int = 40000
FETCH_MAX_HEADINGS: int = 20
USER_AGENT: str = "Mozilla/5.0 (compatible; ITBot/1.0)"

# Rate limiting: token bucket per client (10 requests per 10 minutes by default)
RATE_LIMIT_MAX_TOKENS: int = int(os.getenv("RATE_LIMIT_MAX_TOKENS", "10"))
RATE_LIMIT_WINDOW_SECONDS: float = float(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "600"))

# Response cache: bounded LRU with TTL (100 answers, 6 hours by default)
CACHE_CAPACITY: int = int(os.getenv("CACHE_CAPACITY", "100"))
CACHE_TTL_SECONDS: float = float(os.getenv("CACHE_TTL_SECONDS", str(6 * 60 * 60)))

# Salt for hashed client identities in telemetry lines
TELEMETRY_SALT: str = os.getenv("TELEMETRY_SALT", "").strip()

# Supported operating systems (request payload and answer steps)
SUPPORTED_OS: tuple[str, ...] = ("Windows", "macOS", "Android", "iOS", "ChromeOS", "Linux")
