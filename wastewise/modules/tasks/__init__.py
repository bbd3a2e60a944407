"""Tasks module for the sustainability task workflow.

Provides:
- Task creation, lookup, listing, editing and deletion
- Lifecycle engine with atomic point awards
- Bulk assignment to many residents
- Recurrence of verified tasks
- Statistics and the resident points ledger
"""
