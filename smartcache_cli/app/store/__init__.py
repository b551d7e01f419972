"""
Store package.

Redis-backed persistence of rule list versions, with transactional
read-modify-write commits.
"""
