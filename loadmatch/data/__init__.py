"""
Domain models and storage adapters.
"""
