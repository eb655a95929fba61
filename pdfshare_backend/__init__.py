"""Backend core for the expiring PDF share gateway.

This package keeps FastAPI route handlers thin:
- artifact storage + flat metadata table
- link issuing, access checks and the viewer shell
- periodic reclamation of expired artifacts

Security note:
Artifact ids and access tokens are capability tokens. The id alone is not
enough; a request needs the id *and* its token. Never log tokens or expose
filesystem paths in responses.
"""
