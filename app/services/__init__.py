"""
Services layer - business logic for the issue engine.

DESIGN PRINCIPLE:
- Services contain business logic, NOT routes
- Pure policy (geo, deadline_policy, departments, status_workflow) has no store access
- Store-backed services take an IssueStore so tests can run against memory
"""
