"""
SQL Sentinel - permission gatekeeper and pooled query execution for AI-generated SQL
"""
