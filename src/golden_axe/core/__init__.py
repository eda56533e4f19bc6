"""Title store, roles, permission rules and conversation contexts."""
