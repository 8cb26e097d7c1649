"""
Shared helpers for testing the template_operator library
"""
