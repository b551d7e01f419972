"""
Editing sessions over the stored rule list.
"""
