"""
Constituency office desk API: visitors, appointments, the visit queue,
issues and resumes.
"""

__version__ = "0.1.0"
