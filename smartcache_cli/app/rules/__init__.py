"""
Rules package.

Defines the caching rule model, the first-match matcher used to resolve
the rule governing a query or table, and the two encodings the rule
list is stored with.

Modules of interest:
- models: Rule, query/table views, TTL parsing and input validation.
- matcher: Precedence ordered matching.
- codec: Document and field map encodings, content hash.
"""
