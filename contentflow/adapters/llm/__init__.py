from .openai_provider import OpenAIProvider  # noqa: F401
