"""
jobingest - scheduled job-posting ingestion from feeds and job boards
"""

__version__ = "0.1.0"
