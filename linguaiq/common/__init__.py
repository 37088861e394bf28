"""
Common infrastructure shared by the assessment core: logging, configuration,
error taxonomy and serialization helpers.
"""
