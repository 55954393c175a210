"""Agentic chat over NYC school data.

The orchestrator streams model text, runs tool calls against the in-memory school
store, compresses tool results for the transcript and finishes with optional
evaluation and follow-up suggestions.
"""
