"""
LLM orchestration layer — routing, provider adapters and tool calls.

Modules:
- llm_config: Capability registry, tiers, provider resolution
- providers: One adapter per backend family
- tools: Tool definitions, executors and the tool-call driver
- performance: Per (model, task type) outcome statistics
- router: AdaptiveRouter — model selection and insights
- service: AIService — timeout, fallback and outcome recording
"""
