"""
Query and table statistics recorded by Smart Cache.
"""
