"""
Core: database connection and error types
"""
