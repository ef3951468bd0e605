"""
Domain core for interview invitations.

This package provides:
- Domain events, the event envelope and the integration (wire) envelope
- The Invitation aggregate and its Response entity
- Typed domain errors
- The relational repository for invitations
"""
