"""
Workflow X-Ray
AI module.

Submodules:
    - extraction: JSON extraction from free-text model responses
    - schema: decomposition validation and field-by-field recovery
    - decomposer: prompt → gateway → repair chain, memoized by request hash
    - cache: request hashing and the analysis cache backends
    - gateway: LLM Gateway (provider routing, retry, token logging)
    - prompt_registry: YAML prompt template loading
"""
