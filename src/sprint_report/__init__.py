"""
Sprint Report Generator - Jira sprint status reports.

Resolves a human-entered sprint against a project's Agile boards, pulls
the sprint's issues from Jira and fills a document template with a
color-coded status report.
"""

__version__ = "1.0.0"
__app_name__ = "Sprint Report Generator"
