"""LLM topic classification for arXiv papers.

Modules:
- prompts: Classification prompt
- json_utils: JSON extraction from model output
- text_sanitize: Text cleanup before LLM calls
- classifier: OpenRouter client, validation and fallback
"""
