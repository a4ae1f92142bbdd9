"""Collaborator contracts for recognizer, synthesizer and response service."""
