"""
Smart Cache CLI package.

Configures query caching rules for one Smart Cache application
namespace. It provides:

- app.main: command line entry point.
- app.rules: Rule model, matching and wire encodings.
- app.store: Redis persistence of the ordered rule list.
- app.editor: Pending rule changes before commit.
- app.analytics: Observed query and table statistics.

Guidelines:
- Every commit writes the full rule list as a new version.
- Index 0 of the rule list has the highest precedence.
"""
