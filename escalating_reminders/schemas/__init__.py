"""Request/response and collaborator payload schemas."""
