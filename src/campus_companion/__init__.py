"""campus_companion

Multi-agent assistant backend for Campus Companion: query routing, specialist
agents, response unification, and a streamed chat endpoint.
"""

__version__ = "0.1.0"
