"""Global pytest configuration."""

import os

# Keep the text-generation client on the deterministic stub during tests
os.environ.setdefault("OPENAI_API_KEY", "")
