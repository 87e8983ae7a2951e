"""
memoria - Semantic Memory for Conversational Agents

Decides what an agent should remember about the people it talks to,
and brings the right memories back when they matter.
"""

__version__ = "1.0.0"
