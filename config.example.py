# config.example.py

"""
Documentation-only module (safe to commit).

Configuration is read from INSIGHT_* environment variables, optionally via a local .env file.
Keep real API keys in .env (gitignored), never here.
"""

ENV_VARS = {
    # App / logging
    "INSIGHT_APP_NAME": "App display name (default: comments-insight).",
    "INSIGHT_LOG_LEVEL": "Logging level (default: INFO).",
    # Paths (gitignored)
    "INSIGHT_DATA_DIR": "Local data directory (default: .local/insight).",
    "INSIGHT_TASK_STATE_PATH": "Task snapshot JSON path (default: <data_dir>/task_state.json).",
    # Task persistence
    "INSIGHT_ENABLE_PERSISTENCE": "Save task state across restarts (true/false, default: true).",
    "INSIGHT_PERSIST_DEBOUNCE_SECONDS": "Delay before a batched save (default: 0.5).",
    "INSIGHT_MAX_FINISHED_TASKS": "How many completed/failed tasks to keep (default: 20).",
    # Retry
    "INSIGHT_RETRY_MAX_ATTEMPTS": "Attempts for retryable operations (default: 3).",
    "INSIGHT_RETRY_INITIAL_DELAY_SECONDS": "First backoff delay (default: 1.0).",
    "INSIGHT_RETRY_MAX_DELAY_SECONDS": "Backoff cap (default: 10.0).",
    "INSIGHT_RETRY_BACKOFF_MULTIPLIER": "Backoff growth factor (default: 2.0).",
    # LLM (any OpenAI-compatible endpoint)
    "INSIGHT_LLM_API_KEY": "API key; falls back to OPENAI_API_KEY. Empty => offline analyzer.",
    "INSIGHT_LLM_BASE_URL": "Endpoint base URL (default: https://api.openai.com/v1).",
    "INSIGHT_LLM_MODEL": "Model name (default: gpt-4o-mini).",
    "INSIGHT_LLM_TIMEOUT_SECONDS": "Per-request timeout (default: 60).",
    "INSIGHT_LLM_MAX_TOKENS": "Completion token limit (default: 4000).",
}
