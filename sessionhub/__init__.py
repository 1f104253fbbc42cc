"""
Sessionhub - Multi-tenant messaging session registry

Keeps one messaging session per profile, forwards session lifecycle
events to a webhook, and exposes a small HTTP control API.

Architecture:
- Each module is self-contained with clear interfaces
- Modules are completely replaceable
- No module knows the internals of another
- All communication through defined interfaces

Modules:
- config: Environment configuration
- collaborator: External messaging system (HTTP bridge)
- session: Session handles and the profile registry
- events: Lifecycle event forwarding and journal
- control: Transport-agnostic API operations
- api: HTTP request/response models
"""

__version__ = "1.0.0"
