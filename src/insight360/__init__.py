"""insight360-deploy: health-gated redeploys of the Insight360 news stack.

Insight360 runs as three containers under Docker Compose (MongoDB, the
Node backend and the React frontend). This package replaces the old shell
deploy script with a typed, testable pipeline::

    validate ──► backup ──► pull ──► orchestrate ──► verify
                                          └── failure ──► rollback

Entry point::

    insight360-deploy --help
"""

__version__ = "1.0.0"
