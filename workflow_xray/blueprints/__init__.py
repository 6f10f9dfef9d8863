"""
Workflow X-Ray
Blueprint registry.
"""
