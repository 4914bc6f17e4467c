"""
MockForge - resilient Gemini mock-exam generator.

Generates mock exams from reference papers through a pool of API keys,
assembling truncated or malformed JSON responses into one document and
rendering it as a slide deck, PDF or JSON file.
"""

__version__ = "1.0.0"
