"""
LinguaIQ Assessment Core

This package implements the assessment evaluation pipeline of the LinguaIQ
language-learning platform: the domain model and scoring engine that turn a
learner's answers into a calibrated CEFR diagnostic, the session use cases
that orchestrate it, and the remote-call executor every transcription or
rubric evaluation call passes through.

The package is organised as:
1. linguaiq.assessment - value objects, scoring engine, session use cases
2. linguaiq.providers - remote-call executor and AI provider ports/adapters
3. linguaiq.database - SQLAlchemy tables backing the SQL repositories
4. linguaiq.common - logging, configuration, errors and serialization
"""

__version__ = "0.1.0"
