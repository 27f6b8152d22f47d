# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Do NOT commit real secrets. Use .env (local, gitignored).

This file exists to make the repo self-documenting even without opening .env.
"""

ENV_VARS = {
    # App / logging
    "RENDERQ_APP_NAME": "App display name (default: render-queue).",
    "RENDERQ_LOG_LEVEL": "Console logging level (default: INFO).",
    # Rendering service
    "RENDERQ_API_KEY": "Bearer credential for the images endpoint (falls back to OPENAI_API_KEY).",
    "RENDERQ_BASE_URL": "Service root; /v1/images/generations is appended (default: https://api.bltcy.ai).",
    "RENDERQ_MODEL": "Model identifier (default: nano-banana-2).",
    "RENDERQ_ASPECT_RATIO": "1:1, 3:4, 4:3, 16:9, 9:16 or 21:9 (default: 9:16).",
    "RENDERQ_IMAGE_SIZE": "1K, 2K or 4K (default: 2K).",
    "RENDERQ_REQUEST_TIMEOUT_SECONDS": "Per-request timeout; 0 disables it (default: 0).",
    # Scheduler
    "RENDERQ_MAX_CONCURRENT": "Maximum tasks processing at once (default: 30).",
    "RENDERQ_SCHEDULER_INTERVAL_SECONDS": "Delay between admissions (default: 0.5).",
    "RENDERQ_ADMIT_PER_TICK": "Tasks admitted per tick; 0 fills up to the cap (default: 1).",
    # Paths (gitignored)
    "RENDERQ_DATA_DIR": "Local data directory for logs (default: .local/render_queue).",
    "RENDERQ_EXPORT_DIR": "Where zip archives are written (default: <data_dir>/exports).",
    # Export naming
    "RENDERQ_ARCHIVE_FOLDER": "Top-level folder inside the zip (default: render_queue_images).",
    "RENDERQ_FILENAME_SUFFIX": "Exported files are named <base>_<suffix>.<ext> (default: render).",
    "RENDERQ_ACTIVITY_LOG_LIMIT": "Activity entries kept in memory (default: 500).",
}
