"""
AI Routing Engine

Routes provider-agnostic inference requests across OpenAI, Anthropic and
Google adapters with health-aware failover, stream normalization and
per-response cost attribution.
"""

__version__ = "1.0.0"
