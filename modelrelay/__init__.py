"""
modelrelay — multi-provider LLM orchestration with adaptive routing.

One async call reaches OpenAI, Anthropic, Google Gemini or a local
Ollama server. The package picks a model per task, drives one tool-call
round trip, enforces a global timeout, falls back once to a backup
model, and records latency and success per (model, task type).

Entry point: modelrelay.llm.service.AIService
"""

__version__ = "0.1.0"
