"""nginx admin: configuration editing, validation, reload and backups over HTTP."""
