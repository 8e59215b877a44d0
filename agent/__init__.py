"""Athlete governance agent.

Main components:
- orchestrators/: stage dispatch loop, routing and stream adapter
- composer/: prompts, synthesis, quality gate, escalation, disclaimers
- tools/: retrieval, deduplication, web search
- main.py: FastAPI host exposing the runner over HTTP
"""

# Keep package import free of side effects; the FastAPI app is only built
# when agent.main is imported.
__all__ = []
